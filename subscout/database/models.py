"""
Database models for the subscription tracking service.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Text, ForeignKey,
    Boolean, Numeric, Float, JSON, create_engine, Index, text
)
from sqlalchemy.orm import relationship, sessionmaker, declarative_base
from sqlalchemy.sql import func

from ..constants import (
    SESSION_RUNNING, SUB_ACTIVE, ACTION_PENDING, ACTION_OPEN_STATES,
    DEFAULT_CURRENCY, DEFAULT_MAX_RETRIES
)

Base = declarative_base()


class User(Base):
    """Account owner. Root of every other entity."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    credential_handle = Column(Text)  # opaque reference owned by the credential store
    credential_updated_at = Column(DateTime)
    profile_picture_url = Column(Text)
    created_at = Column(DateTime, default=func.now())
    last_login_at = Column(DateTime)
    last_scan_at = Column(DateTime)
    # Derived from active subscriptions, maintained with every subscription mutation
    subscription_count = Column(Integer, default=0, nullable=False)
    total_monthly_spend = Column(Numeric(10, 2), default=0, nullable=False)
    is_active = Column(Boolean, default=True)
    deleted_at = Column(DateTime)  # soft delete

    # Relationships
    import_sessions = relationship("ImportSession", back_populates="user", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    events = relationship("SubscriptionEvent", back_populates="user", cascade="all, delete-orphan")
    unsubscribe_actions = relationship("UnsubscribeAction", back_populates="user", cascade="all, delete-orphan")
    activity_entries = relationship("ActivityLogEntry", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_users_active', 'is_active'),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<User(email='{self.email}', subscriptions={self.subscription_count})>"


class ImportSession(Base):
    """One scan of a user's inbox."""
    __tablename__ = 'email_import_sessions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    status = Column(String(50), default=SESSION_RUNNING, nullable=False)  # running, completed, failed, cancelled
    total_emails_found = Column(Integer, default=0, nullable=False)
    emails_processed = Column(Integer, default=0, nullable=False)
    subscriptions_found = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime)
    error_message = Column(Text)
    scan_params = Column(JSON)  # search filters, date range, etc.

    user = relationship("User", back_populates="import_sessions")

    __table_args__ = (
        Index('idx_sessions_user', 'user_id'),
        Index('idx_sessions_status', 'status'),
        Index('idx_sessions_started', 'started_at'),
        # At most one running scan per user
        Index('uq_running_session_per_user', 'user_id', unique=True,
              sqlite_where=text(f"status = '{SESSION_RUNNING}'"),
              postgresql_where=text(f"status = '{SESSION_RUNNING}'")),
    )

    def __repr__(self):
        return f"<ImportSession(user_id={self.user_id}, status='{self.status}')>"


class Subscription(Base):
    """A detected recurring subscription."""
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    # Identity
    service_name = Column(String(255), nullable=False)
    service_domain = Column(String(255))  # e.g. netflix.com
    service_logo_url = Column(Text)
    service_category = Column(String(100))  # Streaming, SaaS, News, Fitness, etc.

    # Pricing
    price = Column(Numeric(10, 2))
    currency = Column(String(3), default=DEFAULT_CURRENCY)
    billing_period = Column(String(50))  # monthly, annually, quarterly, one-time

    # Dates
    first_detected_date = Column(Date)
    next_renewal_date = Column(Date)
    last_verified_date = Column(DateTime)

    # Links & metadata
    unsubscribe_link = Column(Text)
    manage_account_link = Column(Text)
    payment_method_last4 = Column(String(4))
    subscription_tier = Column(String(100))  # Premium, Pro, Basic, etc.

    status = Column(String(50), default=SUB_ACTIVE, nullable=False)  # active, cancelled, pending_cancellation, expired

    # Detection provenance
    source_email_ids = Column(JSON, default=list)
    detection_confidence = Column(Float, default=0.0)  # 0.0 to 1.0
    detected_by = Column(String(50))  # rule_based, llm, manual

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    events = relationship("SubscriptionEvent", back_populates="subscription", cascade="all, delete-orphan",
                          order_by="SubscriptionEvent.id")
    unsubscribe_actions = relationship("UnsubscribeAction", back_populates="subscription",
                                       cascade="all, delete-orphan", order_by="UnsubscribeAction.id")

    __table_args__ = (
        Index('idx_subs_user', 'user_id'),
        Index('idx_subs_status', 'status'),
        Index('idx_subs_renewal', 'next_renewal_date'),
        Index('idx_subs_service', 'service_name'),
        Index('idx_subs_created', 'created_at'),
        # At most one active subscription per service per user
        Index('uq_active_subscription_per_service', 'user_id', 'service_name', unique=True,
              sqlite_where=text(f"status = '{SUB_ACTIVE}'"),
              postgresql_where=text(f"status = '{SUB_ACTIVE}'")),
    )

    def has_open_action(self) -> bool:
        """Check if a cancellation attempt is still in flight."""
        return any(action.status in ACTION_OPEN_STATES for action in self.unsubscribe_actions)

    def add_evidence(self, evidence_id: str) -> bool:
        """Append an evidence id if new. Returns True when the list changed."""
        current = list(self.source_email_ids or [])
        if not evidence_id or evidence_id in current:
            return False
        current.append(evidence_id)
        # Reassign so the JSON column is flagged dirty
        self.source_email_ids = current
        return True

    def __repr__(self):
        return f"<Subscription(service='{self.service_name}', price={self.price}, status='{self.status}')>"


class SubscriptionEvent(Base):
    """Immutable audit fact for one subscription."""
    __tablename__ = 'subscription_events'

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    event_type = Column(String(100), nullable=False)
    event_description = Column(Text)
    event_metadata = Column(JSON)
    triggered_by = Column(String(100))  # system, user, component name

    created_at = Column(DateTime, default=func.now())

    subscription = relationship("Subscription", back_populates="events")
    user = relationship("User", back_populates="events")

    __table_args__ = (
        Index('idx_events_subscription', 'subscription_id'),
        Index('idx_events_user', 'user_id'),
        Index('idx_events_type', 'event_type'),
        Index('idx_events_created', 'created_at'),
    )

    def __repr__(self):
        return f"<SubscriptionEvent(subscription_id={self.subscription_id}, type='{self.event_type}')>"


class UnsubscribeAction(Base):
    """One cancellation attempt for a subscription."""
    __tablename__ = 'unsubscribe_actions'

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    action_type = Column(String(50), nullable=False)  # automated, manual_link, manual_phone, email_required
    status = Column(String(50), default=ACTION_PENDING, nullable=False)

    # Execution details
    unsubscribe_url = Column(Text)
    http_method = Column(String(10))  # GET, POST
    form_data = Column(JSON)

    # Response tracking
    http_status_code = Column(Integer)
    response_body_snippet = Column(Text)

    # Confirmation monitoring
    confirmation_email_id = Column(String(255))
    confirmation_detected_at = Column(DateTime)

    # Retry logic
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=DEFAULT_MAX_RETRIES, nullable=False)
    next_attempt_at = Column(DateTime)

    # Execution lease held while the capability call runs outside the lock
    claim_token = Column(String(36))
    claimed_until = Column(DateTime)

    # Error handling
    error_message = Column(Text)
    requires_manual_action = Column(Boolean, default=False, nullable=False)
    manual_instructions = Column(Text)

    initiated_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime)
    monitoring_until = Column(DateTime)  # end of the confirmation window

    subscription = relationship("Subscription", back_populates="unsubscribe_actions")
    user = relationship("User", back_populates="unsubscribe_actions")

    __table_args__ = (
        Index('idx_actions_subscription', 'subscription_id'),
        Index('idx_actions_user', 'user_id'),
        Index('idx_actions_status', 'status'),
        Index('idx_actions_monitoring', 'status', 'monitoring_until'),
    )

    @property
    def is_open(self) -> bool:
        return self.status in ACTION_OPEN_STATES

    def __repr__(self):
        return f"<UnsubscribeAction(subscription_id={self.subscription_id}, type='{self.action_type}', status='{self.status}')>"


class ActivityLogEntry(Base):
    """Denormalized audit record.

    The related_* columns are weak references: plain ids, never foreign keys,
    so entries survive deletion of the entity they mention.
    """
    __tablename__ = 'activity_log'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    activity_type = Column(String(100), nullable=False)
    activity_description = Column(Text, nullable=False)

    related_subscription_id = Column(Integer)
    related_session_id = Column(Integer)
    related_action_id = Column(Integer)

    activity_metadata = Column(JSON)

    created_at = Column(DateTime, default=func.now())

    user = relationship("User", back_populates="activity_entries")

    __table_args__ = (
        Index('idx_log_user', 'user_id'),
        Index('idx_log_type', 'activity_type'),
        Index('idx_log_created', 'created_at'),
    )

    def related_subscription(self, session):
        """Look up the referenced subscription, or None if it no longer exists."""
        if self.related_subscription_id is None:
            return None
        return session.get(Subscription, self.related_subscription_id)

    def related_session(self, session):
        if self.related_session_id is None:
            return None
        return session.get(ImportSession, self.related_session_id)

    def related_action(self, session):
        if self.related_action_id is None:
            return None
        return session.get(UnsubscribeAction, self.related_action_id)

    def __repr__(self):
        return f"<ActivityLogEntry(user_id={self.user_id}, type='{self.activity_type}')>"


class ServiceCatalogEntry(Base):
    """Known service used to normalize detections."""
    __tablename__ = 'service_catalog'

    id = Column(Integer, primary_key=True)
    service_name = Column(String(255), unique=True, nullable=False)
    service_domain = Column(String(255))
    logo_url = Column(Text)
    category = Column(String(100))

    # Known detection patterns
    email_domains = Column(JSON, default=list)  # e.g. ['netflix.com', 'account.netflix.com']
    keywords = Column(JSON, default=list)

    # Stats
    times_detected = Column(Integer, default=0, nullable=False)
    avg_price = Column(Numeric(10, 2))

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_catalog_domain', 'service_domain'),
        Index('idx_catalog_category', 'category'),
    )

    def __repr__(self):
        return f"<ServiceCatalogEntry(service='{self.service_name}', detected={self.times_detected})>"


def create_database_engine(database_url: str = "sqlite:///subscout.db"):
    """Create and return a database engine."""
    engine = create_engine(
        database_url,
        echo=False,  # Set to True for SQL debugging
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {}
    )
    return engine


def create_tables(engine):
    """Create all tables in the database."""
    Base.metadata.create_all(engine)


def get_session_maker(engine):
    """Get a session maker for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
