"""
Command line interface for the VRF lifecycle SDK.
"""
