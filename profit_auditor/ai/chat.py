import json
import logging
from typing import Any, Dict

from openai import OpenAI

from profit_auditor.config import settings

logger = logging.getLogger(__name__)

PLATFORM_INFO = """
Platform Features and Capabilities:
1. Financial Analysis
- Profit monitoring from uploaded spreadsheets and connected platforms
- Automated monthly audits with KPIs and recommendations
- Expense ratio and profit margin tracking month over month

2. AI-Powered Features
- AI assistant for questions about the current audit
- Automated audit report generation

3. Integrations
- Accounting software (Xero, QuickBooks, Sage)
- E-commerce and marketplace stores (Shopify, WooCommerce and others)
- Payment providers (Stripe, PayPal and others)
- CRM systems (Salesforce, HubSpot and others)

4. Reporting
- Audit history and dashboard metrics
- Spreadsheet uploads in CSV and Excel formats

5. Security and Privacy
- Data collection limited to essential business information
- No sharing of financial data with third parties
- User right to data deletion
"""


def build_system_prompt(audit_context: Dict[str, Any]) -> str:
    audit_context = audit_context or {}
    return f"""You are an AI assistant for the Profit Auditor platform.
{PLATFORM_INFO}
Current audit context:
- Summary: {audit_context.get('summary', 'No audit available')}
- KPIs: {json.dumps(audit_context.get('kpis', []), default=str)}
- Recommendations: {json.dumps(audit_context.get('recommendations', []), default=str)}

Provide specific, data-driven answers based on both the platform knowledge and the current audit context.
Be concise but thorough. If you're unsure about any specific detail, say so and refer the user to support."""


class AuditChat:
    def __init__(self, api_key: str = None, client=None, model: str = None):
        self.client = client or OpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            organization=settings.OPENAI_ORG_ID,
        )
        self.model = model or settings.OPENAI_MODEL

    def ask(self, query: str, audit_context: Dict[str, Any]) -> str:
        logger.info(f"Chat query received ({len(query)} chars)")
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": build_system_prompt(audit_context)},
                {"role": "user", "content": query}
            ],
        )
        return response.choices[0].message.content
