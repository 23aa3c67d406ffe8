"""Baseline migration - engagement and credit tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-17

Creates accounts, allowance ledger, payments, diagnoses, leads,
appointments, reviews and policy settings.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all engagement tables."""

    # ==========================================================================
    # Accounts
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY,
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            phone VARCHAR(50),
            role VARCHAR(20) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_users_role CHECK (role IN ('requester', 'provider', 'admin'))
        )
    ''')

    op.execute('''
        CREATE TABLE regions (
            id SERIAL PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            code VARCHAR(20) UNIQUE NOT NULL
        )
    ''')

    op.execute('''
        CREATE TABLE provider_profiles (
            id UUID PRIMARY KEY,
            user_id UUID UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            business_name VARCHAR(255) NOT NULL,
            bio TEXT,
            region_id INTEGER REFERENCES regions(id) ON DELETE SET NULL,
            city VARCHAR(100),
            address VARCHAR(255),
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            kyc_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            is_available BOOLEAN NOT NULL DEFAULT true,
            is_priority_listed BOOLEAN NOT NULL DEFAULT false,
            rating NUMERIC(3, 2) NOT NULL DEFAULT 0,
            rating_count INTEGER NOT NULL DEFAULT 0,
            jobs_completed INTEGER NOT NULL DEFAULT 0,
            total_leads_received INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_provider_profiles_kyc_status
                CHECK (kyc_status IN ('pending', 'submitted', 'approved', 'rejected'))
        )
    ''')
    op.execute('CREATE INDEX idx_provider_profiles_matchable ON provider_profiles(is_available, kyc_status)')
    op.execute('CREATE INDEX idx_provider_profiles_region ON provider_profiles(region_id)')

    op.execute('''
        CREATE TABLE provider_service_regions (
            provider_profile_id UUID NOT NULL REFERENCES provider_profiles(id) ON DELETE CASCADE,
            region_id INTEGER NOT NULL REFERENCES regions(id) ON DELETE CASCADE,
            PRIMARY KEY (provider_profile_id, region_id)
        )
    ''')

    op.execute('''
        CREATE TABLE vehicles (
            id UUID PRIMARY KEY,
            owner_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            make VARCHAR(100) NOT NULL,
            model VARCHAR(100) NOT NULL,
            year INTEGER,
            mileage INTEGER,
            fuel_type VARCHAR(30),
            is_primary BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_vehicles_owner ON vehicles(owner_id, is_primary)')

    # ==========================================================================
    # Allowance ledger
    # ==========================================================================
    op.execute('''
        CREATE TABLE account_allowances (
            id UUID PRIMARY KEY,
            account_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(20) NOT NULL,
            complimentary_remaining INTEGER NOT NULL DEFAULT 0,
            purchased_remaining INTEGER NOT NULL DEFAULT 0,
            total_consumed INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_account_allowances_account_kind UNIQUE (account_id, kind),
            CONSTRAINT ck_account_allowances_kind CHECK (kind IN ('diagnosis', 'lead')),
            CONSTRAINT ck_account_allowances_complimentary CHECK (complimentary_remaining >= 0),
            CONSTRAINT ck_account_allowances_purchased CHECK (purchased_remaining >= 0),
            CONSTRAINT ck_account_allowances_consumed CHECK (total_consumed >= 0)
        )
    ''')

    op.execute('''
        CREATE TABLE allowance_packages (
            id UUID PRIMARY KEY,
            kind VARCHAR(20) NOT NULL,
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            description TEXT,
            units INTEGER NOT NULL,
            price NUMERIC(10, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'GHS',
            validity_days INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT true,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_allowance_packages_kind CHECK (kind IN ('diagnosis', 'lead')),
            CONSTRAINT ck_allowance_packages_units CHECK (units > 0)
        )
    ''')
    op.execute('CREATE INDEX idx_allowance_packages_kind ON allowance_packages(kind, is_active)')

    op.execute('''
        CREATE TABLE allowance_purchases (
            id UUID PRIMARY KEY,
            account_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(20) NOT NULL,
            package_id UUID REFERENCES allowance_packages(id) ON DELETE SET NULL,
            purchase_reference VARCHAR(100) NOT NULL,
            units_purchased INTEGER NOT NULL,
            units_remaining INTEGER NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            expires_at TIMESTAMPTZ,
            amount_paid NUMERIC(10, 2) NOT NULL DEFAULT 0,
            currency VARCHAR(3) NOT NULL DEFAULT 'GHS',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_allowance_purchases_reference UNIQUE (purchase_reference),
            CONSTRAINT ck_allowance_purchases_kind CHECK (kind IN ('diagnosis', 'lead')),
            CONSTRAINT ck_allowance_purchases_status
                CHECK (status IN ('active', 'exhausted', 'expired')),
            CONSTRAINT ck_allowance_purchases_remaining_min CHECK (units_remaining >= 0),
            CONSTRAINT ck_allowance_purchases_remaining_max CHECK (units_remaining <= units_purchased)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_allowance_purchases_fifo
        ON allowance_purchases(account_id, kind, status, created_at)
    ''')
    op.execute('CREATE INDEX idx_allowance_purchases_expiry ON allowance_purchases(status, expires_at)')

    op.execute('''
        CREATE TABLE allowance_ledger_entries (
            id UUID PRIMARY KEY,
            account_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(20) NOT NULL,
            entry_type VARCHAR(20) NOT NULL,
            source VARCHAR(20) NOT NULL,
            delta_units INTEGER NOT NULL,
            purchase_id UUID REFERENCES allowance_purchases(id) ON DELETE SET NULL,
            reference_type VARCHAR(50),
            reference_id UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_allowance_ledger_kind CHECK (kind IN ('diagnosis', 'lead')),
            CONSTRAINT ck_allowance_ledger_entry_type CHECK (entry_type IN ('grant', 'consume', 'expire', 'refund')),
            CONSTRAINT ck_allowance_ledger_source
                CHECK (source IN ('complimentary', 'purchase', 'subscription'))
        )
    ''')
    op.execute('''
        CREATE INDEX idx_allowance_ledger_account
        ON allowance_ledger_entries(account_id, kind, created_at)
    ''')

    op.execute('''
        CREATE TABLE subscription_plans (
            id UUID PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            description TEXT,
            price NUMERIC(10, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'GHS',
            billing_period VARCHAR(20) NOT NULL DEFAULT 'monthly',
            leads_per_period INTEGER,
            priority_listing BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_subscription_plans_billing_period
                CHECK (billing_period IN ('monthly', 'quarterly', 'yearly'))
        )
    ''')

    op.execute('''
        CREATE TABLE provider_subscriptions (
            id UUID PRIMARY KEY,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            plan_id UUID NOT NULL REFERENCES subscription_plans(id) ON DELETE RESTRICT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            starts_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,
            period_key VARCHAR(7),
            period_units_used INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_provider_subscriptions_status
                CHECK (status IN ('pending', 'active', 'cancelled', 'expired')),
            CONSTRAINT ck_provider_subscriptions_used CHECK (period_units_used >= 0)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_provider_subscriptions_active
        ON provider_subscriptions(provider_id, status, ends_at)
    ''')

    # ==========================================================================
    # Payments
    # ==========================================================================
    op.execute('''
        CREATE TABLE payments (
            id UUID PRIMARY KEY,
            payment_reference VARCHAR(40) NOT NULL,
            account_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider VARCHAR(30) NOT NULL DEFAULT 'paystack',
            provider_reference VARCHAR(100),
            amount NUMERIC(10, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'GHS',
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            target_kind VARCHAR(30) NOT NULL,
            target_id UUID NOT NULL,
            units INTEGER,
            failure_reason VARCHAR(255),
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_payments_reference UNIQUE (payment_reference),
            CONSTRAINT ck_payments_status
                CHECK (status IN ('pending', 'completed', 'failed', 'refunded')),
            CONSTRAINT ck_payments_target_kind
                CHECK (target_kind IN ('diagnosis_purchase', 'lead_purchase', 'subscription'))
        )
    ''')
    op.execute('CREATE INDEX idx_payments_account ON payments(account_id, status)')

    # ==========================================================================
    # Diagnoses & leads
    # ==========================================================================
    op.execute('''
        CREATE TABLE diagnoses (
            id UUID PRIMARY KEY,
            requester_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            vehicle_id UUID REFERENCES vehicles(id) ON DELETE SET NULL,
            region_id INTEGER REFERENCES regions(id) ON DELETE SET NULL,
            symptoms TEXT NOT NULL,
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            status VARCHAR(20) NOT NULL DEFAULT 'processing',
            is_free BOOLEAN NOT NULL DEFAULT false,
            consumption_source VARCHAR(20) NOT NULL,
            result JSON,
            urgency VARCHAR(20),
            confidence_score DOUBLE PRECISION,
            error_message TEXT,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_diagnoses_status CHECK (status IN ('processing', 'completed', 'failed')),
            CONSTRAINT ck_diagnoses_consumption_source
                CHECK (consumption_source IN ('complimentary', 'purchase', 'subscription'))
        )
    ''')
    op.execute('CREATE INDEX idx_diagnoses_requester ON diagnoses(requester_id, created_at)')

    op.execute('''
        CREATE TABLE leads (
            id UUID PRIMARY KEY,
            diagnosis_id UUID NOT NULL REFERENCES diagnoses(id) ON DELETE CASCADE,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            requester_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(20) NOT NULL DEFAULT 'new',
            is_free_lead BOOLEAN NOT NULL DEFAULT false,
            is_limited_preview BOOLEAN NOT NULL DEFAULT false,
            consumption_source VARCHAR(20),
            viewed_at TIMESTAMPTZ,
            contacted_at TIMESTAMPTZ,
            converted_at TIMESTAMPTZ,
            closed_at TIMESTAMPTZ,
            close_reason VARCHAR(255),
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_leads_diagnosis_provider UNIQUE (diagnosis_id, provider_id),
            CONSTRAINT ck_leads_status
                CHECK (status IN ('new', 'viewed', 'contacted', 'converted', 'closed')),
            CONSTRAINT ck_leads_consumption_source
                CHECK (consumption_source IN ('complimentary', 'purchase', 'subscription'))
        )
    ''')
    op.execute('CREATE INDEX idx_leads_provider_status ON leads(provider_id, status, created_at)')
    op.execute('CREATE INDEX idx_leads_requester ON leads(requester_id)')

    op.execute('''
        CREATE TABLE lead_activities (
            id UUID PRIMARY KEY,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            actor_id UUID REFERENCES users(id) ON DELETE SET NULL,
            activity_type VARCHAR(20) NOT NULL,
            description TEXT,
            details JSON,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_lead_activities_type
                CHECK (activity_type IN ('created', 'viewed', 'contacted', 'converted', 'closed'))
        )
    ''')
    op.execute('CREATE INDEX idx_lead_activities_lead ON lead_activities(lead_id, created_at)')

    # ==========================================================================
    # Appointments
    # ==========================================================================
    op.execute('''
        CREATE TABLE service_offerings (
            id UUID PRIMARY KEY,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(150) NOT NULL,
            category VARCHAR(50),
            price NUMERIC(10, 2) NOT NULL,
            duration_minutes INTEGER NOT NULL DEFAULT 60,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_service_offerings_price CHECK (price >= 0),
            CONSTRAINT ck_service_offerings_duration CHECK (duration_minutes > 0)
        )
    ''')
    op.execute('CREATE INDEX idx_service_offerings_provider ON service_offerings(provider_id, is_active)')

    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY,
            requester_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            diagnosis_id UUID REFERENCES diagnoses(id) ON DELETE SET NULL,
            vehicle_id UUID REFERENCES vehicles(id) ON DELETE SET NULL,
            scheduled_date DATE NOT NULL,
            scheduled_time TIME NOT NULL,
            estimated_duration_minutes INTEGER NOT NULL DEFAULT 60,
            service_type VARCHAR(20) NOT NULL,
            description TEXT,
            notes TEXT,
            location_type VARCHAR(30) NOT NULL DEFAULT 'provider_shop',
            address VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            estimated_cost NUMERIC(10, 2) NOT NULL DEFAULT 0,
            final_cost NUMERIC(10, 2),
            currency VARCHAR(3) NOT NULL DEFAULT 'GHS',
            confirmed_at TIMESTAMPTZ,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,
            cancellation_reason TEXT,
            cancelled_by VARCHAR(20),
            rejected_at TIMESTAMPTZ,
            rejection_reason TEXT,
            rejected_by VARCHAR(20),
            no_show_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_appointments_status CHECK (status IN (
                'pending', 'confirmed', 'in_progress', 'completed',
                'cancelled', 'rejected', 'no_show'
            )),
            CONSTRAINT ck_appointments_service_type
                CHECK (service_type IN ('diagnostic', 'repair', 'maintenance', 'inspection')),
            CONSTRAINT ck_appointments_location_type
                CHECK (location_type IN ('provider_shop', 'requester_location'))
        )
    ''')
    # One slot-holding appointment per provider slot
    op.execute('''
        CREATE UNIQUE INDEX uq_appointments_active_slot
        ON appointments(provider_id, scheduled_date, scheduled_time)
        WHERE status IN ('pending', 'confirmed')
    ''')
    op.execute('CREATE INDEX idx_appointments_provider_date ON appointments(provider_id, scheduled_date)')
    op.execute('CREATE INDEX idx_appointments_requester_date ON appointments(requester_id, scheduled_date)')
    op.execute('CREATE INDEX idx_appointments_status ON appointments(status)')

    op.execute('''
        CREATE TABLE appointment_line_items (
            id UUID PRIMARY KEY,
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            offering_id UUID REFERENCES service_offerings(id) ON DELETE SET NULL,
            service_name VARCHAR(150) NOT NULL,
            price NUMERIC(10, 2) NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1,
            duration_minutes INTEGER NOT NULL,
            CONSTRAINT ck_appointment_line_items_quantity CHECK (quantity > 0)
        )
    ''')

    # ==========================================================================
    # Reviews & settings
    # ==========================================================================
    op.execute('''
        CREATE TABLE reviews (
            id UUID PRIMARY KEY,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            requester_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            lead_id UUID REFERENCES leads(id) ON DELETE SET NULL,
            appointment_id UUID REFERENCES appointments(id) ON DELETE SET NULL,
            rating INTEGER NOT NULL,
            comment TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_reviews_rating CHECK (rating >= 1 AND rating <= 5),
            CONSTRAINT ck_reviews_subject CHECK (lead_id IS NOT NULL OR appointment_id IS NOT NULL),
            CONSTRAINT uq_reviews_lead UNIQUE (lead_id),
            CONSTRAINT uq_reviews_appointment UNIQUE (appointment_id)
        )
    ''')
    op.execute('CREATE INDEX idx_reviews_provider ON reviews(provider_id, created_at)')

    op.execute('''
        CREATE TABLE app_settings (
            key VARCHAR(100) PRIMARY KEY,
            value TEXT NOT NULL,
            value_type VARCHAR(20) NOT NULL DEFAULT 'string',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_app_settings_value_type CHECK (value_type IN ('integer', 'boolean', 'string'))
        )
    ''')


def downgrade() -> None:
    """Drop all engagement tables."""
    for table in (
        'app_settings',
        'reviews',
        'appointment_line_items',
        'appointments',
        'service_offerings',
        'lead_activities',
        'leads',
        'diagnoses',
        'payments',
        'provider_subscriptions',
        'subscription_plans',
        'allowance_ledger_entries',
        'allowance_purchases',
        'allowance_packages',
        'account_allowances',
        'vehicles',
        'provider_service_regions',
        'provider_profiles',
        'regions',
        'users',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
