from sqlalchemy import Column, Integer, String, Text, DateTime, Date, JSON, Float, Boolean, ForeignKey, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class SpreadsheetUpload(Base):
    __tablename__ = "spreadsheet_uploads"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    filename = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_type = Column(String)
    uploaded_at = Column(DateTime, default=datetime.utcnow, index=True)
    row_count = Column(Integer, nullable=True)
    processed = Column(Boolean, default=False)
    processing_error = Column(Text, nullable=True)
    analysis_results = Column(JSON, nullable=True)
    analyzed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_upload_user_date', 'user_id', 'uploaded_at'),
    )

    def __repr__(self):
        return f"<SpreadsheetUpload(filename='{self.filename}', processed={self.processed})>"


class FinancialAudit(Base):
    __tablename__ = "financial_audits"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    audit_date = Column(DateTime, default=datetime.utcnow)
    period_month = Column(Integer)
    period_year = Column(Integer)
    summary = Column(Text, default="")
    monthly_metrics = Column(JSON)
    kpis = Column(JSON)
    recommendations = Column(JSON)
    alerts = Column(JSON)
    analysis_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_audit_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<FinancialAudit(user_id='{self.user_id}', period='{self.period_year}-{self.period_month}')>"


class AuditMetricHistory(Base):
    __tablename__ = "audit_metrics_history"

    id = Column(Integer, primary_key=True, index=True)
    audit_id = Column(Integer, ForeignKey("financial_audits.id", ondelete="CASCADE"), index=True)
    user_id = Column(String, index=True, nullable=False)
    metric_type = Column(String)  # 'revenue', 'profit_margin', 'expense_ratio', 'audit_alerts'
    metric_value = Column(Float, default=0.0)
    previous_value = Column(Float, nullable=True)
    change_percentage = Column(Float, nullable=True)
    recorded_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_history_user_metric', 'user_id', 'metric_type'),
    )


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    category = Column(String, index=True)  # 'accounting', 'ecommerce', 'marketplace', 'payment', 'crm'
    platform = Column(String)
    store_url = Column(String, nullable=True)
    store_name = Column(String, nullable=True)
    credentials = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)
    sync_frequency = Column(Integer, nullable=True)  # seconds
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(JSON, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_integration_user_category', 'user_id', 'category'),
    )

    def __repr__(self):
        return f"<Integration(category='{self.category}', platform='{self.platform}')>"


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True)
    external_id = Column(String, nullable=True)
    transaction_date = Column(DateTime, index=True)
    type = Column(String)  # 'income', 'expense'
    amount = Column(Float, default=0.0)
    currency = Column(String, default="GBP")
    category = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class EcommerceProduct(Base):
    __tablename__ = "ecommerce_products"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="CASCADE"), index=True)
    user_id = Column(String, index=True, nullable=False)
    platform_product_id = Column(String)
    name = Column(String)
    sku = Column(String, nullable=True)
    price = Column(Float, default=0.0)
    cost = Column(Float, nullable=True)
    currency = Column(String, default="USD")
    inventory_quantity = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_product_platform_id', 'integration_id', 'platform_product_id', unique=True),
    )


class EcommerceSale(Base):
    __tablename__ = "ecommerce_sales"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="CASCADE"), index=True)
    user_id = Column(String, index=True, nullable=False)
    order_id = Column(String, index=True)
    product_id = Column(String)  # platform product id
    quantity = Column(Integer, default=0)
    unit_price = Column(Float, default=0.0)
    total_price = Column(Float, default=0.0)
    currency = Column(String, default="USD")
    sale_date = Column(DateTime, index=True)

    __table_args__ = (
        Index('idx_sale_order_product', 'integration_id', 'order_id', 'product_id', unique=True),
    )


class EcommerceMetric(Base):
    __tablename__ = "ecommerce_metrics"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="CASCADE"), index=True)
    user_id = Column(String, index=True, nullable=False)
    metric_date = Column(Date, index=True)
    daily_revenue = Column(Float, default=0.0)
    total_orders = Column(Integer, default=0)
    average_order_value = Column(Float, default=0.0)
    products_sold = Column(Integer, default=0)
    top_products = Column(JSON, nullable=True)
    customer_metrics = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_metric_integration_date', 'integration_id', 'metric_date', unique=True),
    )


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String, index=True, nullable=False)
    provider = Column(String)
    amount = Column(Float, default=0.0)
    fee = Column(Float, default=0.0)
    currency = Column(String, default="USD")
    status = Column(String)  # 'succeeded', 'refunded', 'failed'
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class CrmDeal(Base):
    __tablename__ = "crm_deals"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String)
    stage = Column(String)
    value = Column(Float, default=0.0)
    close_date = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
