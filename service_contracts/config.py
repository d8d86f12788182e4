import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./service_contracts.db")

# Business identity printed on contracts and sent to the payment processor
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Clean Up Bros")
BUSINESS_ABN = os.getenv("BUSINESS_ABN", "[Your ABN]")
BUSINESS_EMAIL = os.getenv("BUSINESS_EMAIL", "cleanupbros.au@gmail.com")
BUSINESS_PHONE = os.getenv("BUSINESS_PHONE", "+61 406 764 585")
BUSINESS_JURISDICTION = os.getenv("BUSINESS_JURISDICTION", "New South Wales, Australia")
# Single ISO currency for the business locale - not overridable per contract
BUSINESS_CURRENCY = "AUD"

# Human-readable identifiers: PREFIX-YY-NNNN
CONTRACT_NUMBER_PREFIX = os.getenv("CONTRACT_NUMBER_PREFIX", "CUB")
INVOICE_NUMBER_PREFIX = os.getenv("INVOICE_NUMBER_PREFIX", "INV")
INVOICE_DUE_DAYS = int(os.getenv("INVOICE_DUE_DAYS", "14"))

# Square Configuration
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")  # sandbox or production
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN")
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID")
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-12-18")
SQUARE_WEBHOOK_SIGNATURE_KEY = os.getenv(
    "SQUARE_WEBHOOK_SIGNATURE_KEY"
)  # Webhook signature key from Square Dashboard
# Must match the notification URL registered with Square exactly (it is part of the signed message)
SQUARE_WEBHOOK_URL = os.getenv("SQUARE_WEBHOOK_URL")

# Gateway calls never block indefinitely; a timeout is reported as an ambiguous outcome
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "https://cleanupbros.com.au")
PAYMENT_REDIRECT_URL = os.getenv("PAYMENT_REDIRECT_URL", f"{FRONTEND_URL}/payment-success")
# For production with credentials we need specific origins
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:5173,http://localhost:3000").split(",")

# Cloudflare R2 Configuration (contract PDF cache)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "service-contracts")
