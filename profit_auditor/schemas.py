import datetime as dt
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

INTEGRATION_PLATFORMS = {
    "accounting": {"xero", "quickbooks", "sage"},
    "ecommerce": {"shopify", "woocommerce", "magento", "bigcommerce", "prestashop", "amazon", "ebay", "etsy"},
    "marketplace": {"shopify", "woocommerce", "magento", "bigcommerce", "prestashop", "amazon", "ebay", "etsy"},
    "payment": {"stripe", "paypal", "square", "adyen", "braintree", "razorpay"},
    "crm": {"salesforce", "hubspot", "zoho", "dynamics365", "pipedrive", "gohighlevel"},
}


class ProcessSpreadsheetRequest(BaseModel):
    uploadId: int


class GenerateAuditRequest(BaseModel):
    user_id: str = Field(min_length=1)
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    clear_previous: bool = False


class ChatRequest(BaseModel):
    query: str = Field(min_length=1)
    auditContext: Dict[str, Any] = Field(default_factory=dict)


class IntegrationCreate(BaseModel):
    user_id: str = Field(min_length=1)
    category: str
    platform: str
    store_url: Optional[str] = None
    store_name: Optional[str] = None
    credentials: Dict[str, Any] = Field(default_factory=dict)
    sync_frequency: Optional[int] = Field(default=None, gt=0)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("category")
    @classmethod
    def known_category(cls, value: str) -> str:
        value = value.lower()
        if value not in INTEGRATION_PLATFORMS:
            raise ValueError(f"Unknown integration category: {value}")
        return value

    @field_validator("platform")
    @classmethod
    def known_platform(cls, value: str, info) -> str:
        value = value.lower()
        category = info.data.get("category")
        if category and value not in INTEGRATION_PLATFORMS[category]:
            raise ValueError(f"Unsupported {category} platform: {value}")
        return value


class SyncRequest(BaseModel):
    integration_id: int


class MetricsRequest(BaseModel):
    integration_id: int
    date: Optional[dt.date] = None


class TransactionCreate(BaseModel):
    user_id: str = Field(min_length=1)
    transaction_date: dt.datetime
    type: str = Field(pattern="^(income|expense)$")
    amount: float
    currency: str = "GBP"
    category: Optional[str] = None
    description: Optional[str] = None
    integration_id: Optional[int] = None
    external_id: Optional[str] = None
