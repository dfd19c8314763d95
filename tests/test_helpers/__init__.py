from .chain import (
    FakeChain,
    FIRST_REQUEST_ID,
    INSUFFICIENT_BALANCE,
    INVALID_CONSUMER,
    NON_EXISTENT_SUBSCRIPTION,
    OTHER_OWNER,
    TEST_CONSUMER,
    TEST_COORDINATOR,
    TEST_PRIV_KEY,
    TEST_RPC_URL,
    TEST_TOKEN,
)
