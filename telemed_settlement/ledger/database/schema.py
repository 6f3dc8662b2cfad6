"""
Settlement Ledger Database Schema
Supports appointments with payment/refund state, their audit trail,
doctor payout profiles, withdrawals, platform settings and notifications.
"""

SCHEMA = """
-- =============================================================================
-- 1. PLATFORM_SETTINGS - Singleton row (id = 1) of commission and fee settings
-- =============================================================================
CREATE TABLE IF NOT EXISTS platform_settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    patient_commission REAL NOT NULL,
    doctor_commission REAL NOT NULL,
    cancellation_fee REAL NOT NULL,
    gateway_fee_pct REAL NOT NULL,
    gst_on_gateway_fee_pct REAL NOT NULL,
    minimum_withdrawal REAL NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);


-- =============================================================================
-- 2. DOCTORS - Payout profile (fee and bank details only)
-- =============================================================================
CREATE TABLE IF NOT EXISTS doctors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    consultation_fee REAL NOT NULL,

    -- Payout destination (either is enough)
    bank_account_number TEXT,
    ifsc_code TEXT,
    upi_id TEXT,

    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);


-- =============================================================================
-- 3. APPOINTMENTS - One paid booking; never deleted
-- =============================================================================
CREATE TABLE IF NOT EXISTS appointments (
    id TEXT PRIMARY KEY,
    patient_id TEXT NOT NULL,
    doctor_id TEXT NOT NULL,

    -- Patient snapshot at booking time
    patient_name TEXT NOT NULL,
    patient_age INTEGER NOT NULL,
    patient_gender TEXT NOT NULL,
    symptoms TEXT,
    notes TEXT,
    records TEXT,  -- JSON array of uploaded record references

    -- Scheduling
    scheduled_at TEXT NOT NULL,
    rescheduled_at TEXT,
    reschedule_reason TEXT,

    -- Status: pending, accepted, rejected, rescheduled, completed, canceled
    status TEXT NOT NULL DEFAULT 'pending',
    booking_status TEXT NOT NULL DEFAULT 'pending',
    reject_reason TEXT,

    -- Financials, frozen at booking
    consultation_fee REAL NOT NULL,
    patient_commission_rate REAL NOT NULL,
    doctor_commission_rate REAL NOT NULL,
    total_fee REAL NOT NULL,

    -- Payment: pending, paid, failed, refunded
    payment_status TEXT NOT NULL DEFAULT 'pending',
    payment_order_id TEXT,
    payment_id TEXT,
    payment_signature TEXT,
    payment_method TEXT,
    amount_paid REAL,
    paid_at TEXT,

    -- Refund: Pending, Approved, Processed, Failed
    refund_status TEXT,
    refunded_at TEXT,
    refund_id TEXT,
    refund_amount REAL,
    refund_created_at TEXT,
    refund_cancellation_fee REAL,
    refund_gateway_fee REAL,
    refund_gst_on_gateway_fee REAL,
    refund_residual REAL,

    -- Completion
    call_duration TEXT,
    completed_at TEXT,
    prescription_status TEXT NOT NULL DEFAULT 'Pending',

    -- Cancellation
    cancellation_reason TEXT,
    canceled_at TEXT,

    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_appointments_doctor ON appointments(doctor_id, status);
CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id);
CREATE INDEX IF NOT EXISTS idx_appointments_payment ON appointments(payment_status);

-- One appointment per gateway payment
CREATE UNIQUE INDEX IF NOT EXISTS idx_appointments_payment_id
    ON appointments(payment_id) WHERE payment_id IS NOT NULL;


-- =============================================================================
-- 4. APPOINTMENT_EVENTS - Append-only audit trail of appointment mutations
-- =============================================================================
CREATE TABLE IF NOT EXISTS appointment_events (
    id TEXT PRIMARY KEY,
    appointment_id TEXT NOT NULL,
    event TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT,
    actor_id TEXT,
    actor_role TEXT,
    detail TEXT,  -- JSON
    created_at TEXT NOT NULL,
    FOREIGN KEY (appointment_id) REFERENCES appointments(id)
);

CREATE INDEX IF NOT EXISTS idx_events_appointment ON appointment_events(appointment_id);


-- =============================================================================
-- 5. WITHDRAWALS - Doctor payout requests
-- =============================================================================
CREATE TABLE IF NOT EXISTS withdrawals (
    id TEXT PRIMARY KEY,
    reference TEXT UNIQUE,
    doctor_id TEXT NOT NULL,
    amount REAL NOT NULL,
    method TEXT NOT NULL,

    -- Status: pending, approved, rejected
    status TEXT NOT NULL DEFAULT 'pending',
    requested_at TEXT NOT NULL,

    -- Approval
    approved_amount REAL,
    payment_mode TEXT,
    transaction_id TEXT,
    payment_date TEXT,
    invoice_url TEXT,

    -- Rejection
    rejection_reason TEXT,
    rejected_at TEXT,

    FOREIGN KEY (doctor_id) REFERENCES doctors(id)
);

CREATE INDEX IF NOT EXISTS idx_withdrawals_doctor ON withdrawals(doctor_id, status);


-- =============================================================================
-- 6. NOTIFICATIONS - In-app notifications for patients and doctors
-- =============================================================================
CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    recipient_id TEXT NOT NULL,
    message TEXT NOT NULL,
    context TEXT,  -- JSON
    read INTEGER DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id);
"""

SEED_SETTINGS = """
INSERT OR IGNORE INTO platform_settings (
    id, patient_commission, doctor_commission, cancellation_fee,
    gateway_fee_pct, gst_on_gateway_fee_pct, minimum_withdrawal
) VALUES (1, :patient_commission, :doctor_commission, :cancellation_fee,
          :gateway_fee_pct, :gst_on_gateway_fee_pct, :minimum_withdrawal)
"""
