#!/usr/bin/env python3
"""Create the Cochera Admin database tables and RPCs."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
CREATE EXTENSION IF NOT EXISTS "pgcrypto";

DO $$ BEGIN
    CREATE TYPE user_role AS ENUM (
        'superadmin', 'owner', 'manager', 'administrative', 'operador', 'auditor'
    );
EXCEPTION WHEN duplicate_object THEN NULL;
END $$;

DO $$ BEGIN
    CREATE TYPE tariff_type AS ENUM ('hora', 'turno', 'abono');
EXCEPTION WHEN duplicate_object THEN NULL;
END $$;

-- 1. profiles
CREATE TABLE IF NOT EXISTS profiles (
    id UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
    email VARCHAR(255),
    full_name VARCHAR(255),
    role user_role NOT NULL DEFAULT 'owner',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 2. garages
CREATE TABLE IF NOT EXISTS garages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    address VARCHAR(255),
    cuit VARCHAR(20),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_garages_owner_id ON garages(owner_id);

-- 3. building_configs
CREATE TABLE IF NOT EXISTS building_configs (
    garage_id UUID PRIMARY KEY REFERENCES garages(id) ON DELETE CASCADE,
    count_subsuelos INTEGER NOT NULL DEFAULT 0 CHECK (count_subsuelos >= 0),
    has_planta_baja BOOLEAN NOT NULL DEFAULT TRUE,
    count_pisos INTEGER NOT NULL DEFAULT 0 CHECK (count_pisos >= 0)
);

-- 4. building_levels
CREATE TABLE IF NOT EXISTS building_levels (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    type VARCHAR(20) NOT NULL CHECK (type IN ('subsuelo', 'planta_baja', 'piso')),
    level_number INTEGER NOT NULL,
    display_name VARCHAR(100) NOT NULL,
    sort_order INTEGER NOT NULL,
    total_spots INTEGER NOT NULL DEFAULT 0 CHECK (total_spots >= 0),
    UNIQUE(garage_id, sort_order)
);

-- 5. financial_configs
CREATE TABLE IF NOT EXISTS financial_configs (
    garage_id UUID PRIMARY KEY REFERENCES garages(id) ON DELETE CASCADE,
    surcharge_config JSONB NOT NULL DEFAULT '{"global_default": {"steps": []}, "monthly_overrides": {}}'::jsonb
);

-- 6. vehicle_types
CREATE TABLE IF NOT EXISTS vehicle_types (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    name VARCHAR(100) NOT NULL,
    icon_key VARCHAR(50),
    sort_order INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_vehicle_types_garage_id ON vehicle_types(garage_id);

-- 7. tariffs
CREATE TABLE IF NOT EXISTS tariffs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    name VARCHAR(100) NOT NULL,
    type tariff_type NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    days INTEGER NOT NULL DEFAULT 0,
    hours INTEGER NOT NULL DEFAULT 0,
    minutes INTEGER NOT NULL DEFAULT 0,
    tolerance INTEGER NOT NULL DEFAULT 0,
    is_protected BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS idx_tariffs_garage_id ON tariffs(garage_id);

-- 8. prices
CREATE TABLE IF NOT EXISTS prices (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    tariff_id UUID NOT NULL REFERENCES tariffs(id) ON DELETE CASCADE,
    vehicle_type_id UUID NOT NULL REFERENCES vehicle_types(id) ON DELETE CASCADE,
    price_list VARCHAR(20) NOT NULL DEFAULT 'standard'
        CHECK (price_list IN ('standard', 'electronic')),
    amount NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (amount >= 0),
    UNIQUE(garage_id, tariff_id, vehicle_type_id, price_list)
);

-- 9. employee_accounts
CREATE TABLE IF NOT EXISTS employee_accounts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    username VARCHAR(100) NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    first_name VARCHAR(100) NOT NULL,
    last_name VARCHAR(100) NOT NULL,
    role user_role NOT NULL CHECK (role IN ('manager', 'administrative', 'operador', 'auditor')),
    permissions JSONB NOT NULL DEFAULT '{"allowed_garages": [], "sections": []}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_employee_accounts_owner_id ON employee_accounts(owner_id);

-- 10. customers
CREATE TABLE IF NOT EXISTS customers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    owner_id UUID REFERENCES profiles(id) ON DELETE SET NULL,
    dni VARCHAR(30) NOT NULL,
    name VARCHAR(255) NOT NULL,
    email VARCHAR(255),
    phone VARCHAR(50),
    address VARCHAR(255),
    localidad VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(garage_id, dni)
);

-- 11. vehicles
CREATE TABLE IF NOT EXISTS vehicles (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    owner_id UUID REFERENCES profiles(id) ON DELETE SET NULL,
    customer_id UUID REFERENCES customers(id) ON DELETE SET NULL,
    plate VARCHAR(20) NOT NULL,
    type VARCHAR(100),
    brand VARCHAR(100),
    model VARCHAR(100),
    color VARCHAR(50),
    year VARCHAR(10),
    insurance VARCHAR(100),
    is_subscriber BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(garage_id, plate)
);

-- 12. cocheras (parking spaces)
CREATE TABLE IF NOT EXISTS cocheras (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    cliente_id UUID REFERENCES customers(id) ON DELETE SET NULL,
    tipo VARCHAR(20) NOT NULL CHECK (tipo IN ('Movil', 'Fija', 'Exclusiva')),
    numero VARCHAR(50) NOT NULL,
    vehiculos TEXT[] NOT NULL DEFAULT '{}',
    status VARCHAR(20) NOT NULL DEFAULT 'Libre',
    precio_base NUMERIC(12, 2) NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 13. subscriptions
CREATE TABLE IF NOT EXISTS subscriptions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    owner_id UUID REFERENCES profiles(id) ON DELETE SET NULL,
    customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
    vehicle_id UUID REFERENCES vehicles(id) ON DELETE SET NULL,
    type VARCHAR(20) NOT NULL,
    price NUMERIC(12, 2) NOT NULL DEFAULT 0,
    start_date TIMESTAMPTZ NOT NULL,
    end_date TIMESTAMPTZ NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 14. debts
CREATE TABLE IF NOT EXISTS debts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    subscription_id UUID REFERENCES subscriptions(id) ON DELETE CASCADE,
    customer_id UUID REFERENCES customers(id) ON DELETE CASCADE,
    amount NUMERIC(12, 2) NOT NULL CHECK (amount >= 0),
    status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
    due_date TIMESTAMPTZ NOT NULL,
    surcharge_applied NUMERIC(12, 2) NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 15. stays (written by the desk application)
CREATE TABLE IF NOT EXISTS stays (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    plate VARCHAR(20) NOT NULL,
    vehicle_type VARCHAR(100),
    entry_time TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    exit_time TIMESTAMPTZ,
    active BOOLEAN NOT NULL DEFAULT TRUE
);
CREATE INDEX IF NOT EXISTS idx_stays_garage_active ON stays(garage_id, active);

-- 16. movements (written by the desk application)
CREATE TABLE IF NOT EXISTS movements (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    garage_id UUID NOT NULL REFERENCES garages(id) ON DELETE CASCADE,
    type VARCHAR(30) NOT NULL,
    plate VARCHAR(20),
    amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
    payment_method VARCHAR(30),
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    ticket_number VARCHAR(50),
    operator VARCHAR(255),
    vehicle_type VARCHAR(100),
    notes TEXT,
    related_entity_id UUID,
    invoice_type VARCHAR(20)
);
CREATE INDEX IF NOT EXISTS idx_movements_garage_timestamp ON movements(garage_id, timestamp DESC);
"""

# Plain passwords written straight to the table are hashed in place; bcrypt
# hashes produced by the API ($2a$) pass through untouched.
PASSWORD_TRIGGER = r"""
CREATE OR REPLACE FUNCTION encrypt_employee_password()
RETURNS trigger AS $$
BEGIN
    IF NEW.password_hash IS NOT NULL AND NEW.password_hash !~ '^\$2[axy]\$.{56}$' THEN
        NEW.password_hash := crypt(NEW.password_hash, gen_salt('bf', 10));
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trigger_encrypt_employee_password ON employee_accounts;
CREATE TRIGGER trigger_encrypt_employee_password
BEFORE INSERT OR UPDATE ON employee_accounts
FOR EACH ROW EXECUTE FUNCTION encrypt_employee_password();
"""

RPCS = """
CREATE OR REPLACE FUNCTION login_employee(p_username text, p_password text)
RETURNS json
LANGUAGE plpgsql
SECURITY DEFINER
SET search_path = public
AS $$
DECLARE
    v_user record;
BEGIN
    SELECT * INTO v_user FROM employee_accounts WHERE username = p_username;

    IF v_user.id IS NOT NULL AND v_user.password_hash = crypt(p_password, v_user.password_hash) THEN
        RETURN json_build_object(
            'id', v_user.id,
            'email', null,
            'full_name', v_user.first_name || ' ' || v_user.last_name,
            'role', v_user.role,
            'owner_id', v_user.owner_id,
            'username', v_user.username,
            'permissions', v_user.permissions
        );
    END IF;

    RETURN null;
END;
$$;

CREATE OR REPLACE FUNCTION get_staff_by_owner(p_owner_id uuid)
RETURNS SETOF employee_accounts
LANGUAGE sql
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT * FROM employee_accounts
    WHERE owner_id = p_owner_id AND owner_id = auth.uid();
$$;

CREATE OR REPLACE FUNCTION fn_system_factory_reset()
RETURNS void
LANGUAGE plpgsql
SECURITY DEFINER
SET search_path = public
AS $$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM profiles WHERE id = auth.uid() AND role = 'superadmin') THEN
        RAISE EXCEPTION 'Acceso Denegado: ID % no autorizado para reset global.', auth.uid()
            USING ERRCODE = '42501';
    END IF;

    DELETE FROM movements;
    DELETE FROM stays;
    DELETE FROM debts;
    DELETE FROM subscriptions;
    DELETE FROM cocheras;
    DELETE FROM vehicles;
    DELETE FROM customers;
    DELETE FROM prices;
    DELETE FROM financial_configs;
    DELETE FROM building_levels;
    DELETE FROM building_configs;
    DELETE FROM tariffs;
    DELETE FROM vehicle_types;
    DELETE FROM employee_accounts;
    DELETE FROM garages;
    DELETE FROM profiles WHERE role != 'superadmin';
END;
$$;

GRANT EXECUTE ON FUNCTION login_employee(text, text) TO anon, authenticated;
GRANT EXECUTE ON FUNCTION get_staff_by_owner(uuid) TO authenticated;
GRANT EXECUTE ON FUNCTION fn_system_factory_reset() TO authenticated;

NOTIFY pgrst, 'reload config';
"""


def main():
    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    print("Installing password trigger...")
    cur.execute(PASSWORD_TRIGGER)

    print("Creating RPCs...")
    cur.execute(RPCS)

    # Verify
    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.execute(
        "SELECT routine_name FROM information_schema.routines "
        "WHERE routine_schema = 'public' AND routine_type = 'FUNCTION' ORDER BY routine_name;"
    )
    routines = cur.fetchall()
    print(f"Functions: {[r[0] for r in routines]}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
