import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Security
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret_change_me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "1440"))  # 1 day
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Store
STORE_NAME = os.getenv("STORE_NAME", "Storefront")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "USD")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
PLACEHOLDER_IMAGE = os.getenv("PLACEHOLDER_IMAGE", "https://dummyimage.com/200x200/e0e0e0/333333&text=Product")

# Payments
STRIPE_SECRET = os.getenv("STRIPE_SECRET_KEY")

# Runtime
ENABLE_DEV_SEED = os.getenv("ENABLE_DEV_SEED", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
