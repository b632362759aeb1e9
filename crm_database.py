# crm_database.py

from extensions import db
from utils.datetime_utils import utc_now
from utils.crypto_utils import encrypt_token, decrypt_token
from sqlalchemy.types import TypeDecorator


class EncryptedToken(TypeDecorator):
    """Text column that is Fernet-encrypted at rest and plaintext in Python"""
    impl = db.Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return encrypt_token(value)

    def process_result_value(self, value, dialect):
        return decrypt_token(value)


# --- Business account (tenant) ---
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    business_name = db.Column(db.String(200), nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    profile = db.relationship('BusinessProfile', backref='user', uselist=False)


class BusinessProfile(db.Model):
    __tablename__ = 'business_profile'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    business_name = db.Column(db.String(200), nullable=True)
    business_category = db.Column(db.String(100), nullable=True)  # 'Healthcare', 'Beauty & Salon', ...
    location = db.Column(db.String(200), nullable=True)
    business_email = db.Column(db.String(120), nullable=True)
    brand_voice = db.Column(db.String(20), nullable=True)  # 'friendly', 'professional', 'playful', 'sophisticated'
    short_business_bio = db.Column(db.Text, nullable=True)
    products_services = db.Column(db.Text, nullable=True)
    business_materials = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class Client(db.Model):
    __tablename__ = 'client'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    last_visit = db.Column(db.DateTime(timezone=True), nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    external_customer_id = db.Column(db.String(100), nullable=True)  # Scheduling provider customer id
    client_metadata = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.Index('ix_client_user_email', 'user_id', 'email'),
    )


class Campaign(db.Model):
    __tablename__ = 'campaign'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    subject = db.Column(db.String(500), nullable=True)
    body = db.Column(db.Text, nullable=True)
    audience = db.Column(db.JSON, nullable=False, default=dict)  # {'segmentType', 'clientIds', 'filters'}
    status = db.Column(db.String(20), nullable=False, default='draft')  # 'draft', 'scheduled', 'sending', 'sent'
    recipient_count = db.Column(db.Integer, nullable=False, default=0)
    appointments_booked = db.Column(db.Integer, nullable=False, default=0)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Auto-campaign fields
    is_auto = db.Column(db.Boolean, nullable=False, default=False)
    auto_category = db.Column(db.String(50), nullable=True)  # 'win-back', 'seasonal-promo', ...

    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    recipients = db.relationship('CampaignRecipient', backref='campaign',
                                 cascade='all, delete-orphan')

    __table_args__ = (
        # Auto-campaign dedupe key: one auto-campaign per business and slot date
        db.Index('uq_auto_campaign_slot', 'user_id', 'scheduled_at',
                 unique=True,
                 postgresql_where=db.text('is_auto'),
                 sqlite_where=db.text('is_auto')),
    )


class CampaignRecipient(db.Model):
    """One row per delivery attempt of a campaign to a client"""
    __tablename__ = 'campaign_recipient'
    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaign.id'), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True)
    email = db.Column(db.String(120), nullable=False)
    outcome = db.Column(db.String(20), nullable=False)  # 'sent', 'failed'
    error = db.Column(db.Text, nullable=True)
    provider_message_id = db.Column(db.String(200), nullable=True)
    attempted_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    # Deleting a client keeps its ledger rows with client_id nulled
    client = db.relationship('Client', backref='campaign_deliveries')

    __table_args__ = (
        db.UniqueConstraint('campaign_id', 'client_id', name='uq_campaign_recipient'),
    )


class Appointment(db.Model):
    __tablename__ = 'appointment'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaign.id'), nullable=True)
    appointment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    service = db.Column(db.String(200), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='booked')  # 'booked', 'pending', 'completed', 'cancelled'
    amount = db.Column(db.Numeric(10, 2), nullable=True)
    external_booking_id = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    client = db.relationship('Client', backref='appointments')
    campaign = db.relationship('Campaign', backref='appointments')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'external_booking_id', name='uq_appointment_external_booking'),
    )


class Integration(db.Model):
    __tablename__ = 'integration'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    provider = db.Column(db.String(20), nullable=False)  # 'gmail', 'square'
    access_token = db.Column(EncryptedToken, nullable=False)
    refresh_token = db.Column(EncryptedToken, nullable=True)
    token_expiry = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        # At most one active integration per (business, provider)
        db.Index('uq_integration_active_provider', 'user_id', 'provider',
                 unique=True,
                 postgresql_where=db.text('is_active'),
                 sqlite_where=db.text('is_active')),
    )
