import os

# Redis Connection
REDIS_URL = os.environ.get("LOOT_REDIS_URL", "redis://localhost:6379/0")

# Settlement asset whose balances back the treasury
SETTLEMENT_ASSET = os.environ.get("LOOT_SETTLEMENT_ASSET", "USDC")

# Maintenance
SWEEP_MAX_AGE_SECONDS = 86_400
