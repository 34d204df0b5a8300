"""
PL/pgSQL definitions of the routing RPC functions.

Every function is a single transactional call; mutual exclusion on a lead
comes from the conditional UPDATE / SELECT ... FOR UPDATE on its row.
"""

import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncConnection

from leadrouter.config import settings

logger = logging.getLogger(__name__)

ROUTING_FUNCTION_NAMES = (
    "acquire_routing_lock",
    "complete_routing",
    "fail_routing",
    "check_cross_partner_duplicate",
    "release_stale_routing_locks",
    "mark_expired_leads",
)


def routing_function_ddl(lock_timeout_minutes: int = 5) -> List[str]:
    """Return the CREATE OR REPLACE FUNCTION statements, one per function."""
    lock_timeout = f"interval '{int(lock_timeout_minutes)} minutes'"

    acquire_routing_lock = f"""
CREATE OR REPLACE FUNCTION acquire_routing_lock(p_lead_id uuid, p_lock_owner text)
RETURNS boolean
LANGUAGE plpgsql
AS $$
DECLARE
    v_updated integer;
BEGIN
    UPDATE leads
       SET routing_status = 'routing',
           routing_locked_by = p_lock_owner,
           routing_locked_at = now(),
           routing_attempts = routing_attempts + 1,
           updated_at = now()
     WHERE id = p_lead_id
       AND routing_status IN ('pending', 'routing')
       AND (routing_locked_by IS NULL
            OR routing_locked_at < now() - {lock_timeout});

    GET DIAGNOSTICS v_updated = ROW_COUNT;
    RETURN v_updated > 0;
END;
$$;
"""

    complete_routing = """
CREATE OR REPLACE FUNCTION complete_routing(
    p_lead_id uuid,
    p_destination_workspace_id uuid,
    p_matched_rule_id uuid,
    p_lock_owner text,
    p_routing_result text DEFAULT 'success'
)
RETURNS boolean
LANGUAGE plpgsql
AS $$
DECLARE
    v_source uuid;
BEGIN
    SELECT workspace_id INTO v_source
      FROM leads
     WHERE id = p_lead_id
       AND routing_status = 'routing'
       AND routing_locked_by = p_lock_owner
       FOR UPDATE;

    IF NOT FOUND THEN
        RETURN false;
    END IF;

    UPDATE leads
       SET workspace_id = p_destination_workspace_id,
           routing_status = 'routed',
           routing_locked_by = NULL,
           routing_locked_at = NULL,
           routing_error = NULL,
           routing_rule_id = p_matched_rule_id,
           routed_at = now(),
           routing_metadata = coalesce(routing_metadata, '{}'::jsonb) || jsonb_build_object(
               'original_workspace_id',
               coalesce(routing_metadata ->> 'original_workspace_id', v_source::text),
               'routing_result', p_routing_result
           ),
           updated_at = now()
     WHERE id = p_lead_id;

    UPDATE lead_routing_queue
       SET processed_at = now()
     WHERE lead_id = p_lead_id
       AND processed_at IS NULL;

    INSERT INTO lead_routing_logs (
        id, lead_id, source_workspace_id, destination_workspace_id,
        matched_rule_id, routing_result, created_at
    ) VALUES (
        gen_random_uuid(), p_lead_id, v_source, p_destination_workspace_id,
        p_matched_rule_id, p_routing_result, now()
    );

    RETURN true;
END;
$$;
"""

    fail_routing = """
CREATE OR REPLACE FUNCTION fail_routing(
    p_lead_id uuid,
    p_error_message text,
    p_lock_owner text,
    p_max_attempts integer,
    p_retry_base_seconds integer DEFAULT 60,
    p_retry_max_seconds integer DEFAULT 3600
)
RETURNS boolean
LANGUAGE plpgsql
AS $$
DECLARE
    v_workspace uuid;
    v_attempts integer;
    v_delay double precision;
BEGIN
    SELECT workspace_id, routing_attempts INTO v_workspace, v_attempts
      FROM leads
     WHERE id = p_lead_id
       AND routing_status = 'routing'
       AND routing_locked_by = p_lock_owner
       FOR UPDATE;

    IF NOT FOUND THEN
        RETURN false;
    END IF;

    IF v_attempts < p_max_attempts THEN
        UPDATE leads
           SET routing_status = 'pending',
               routing_locked_by = NULL,
               routing_locked_at = NULL,
               routing_error = p_error_message,
               updated_at = now()
         WHERE id = p_lead_id;

        -- exponential backoff, capped, with 50-100% jitter
        v_delay := least(
            p_retry_base_seconds * power(2, greatest(v_attempts - 1, 0)),
            p_retry_max_seconds
        );
        v_delay := v_delay * (0.5 + random() / 2);

        UPDATE lead_routing_queue
           SET attempt_number = v_attempts,
               max_attempts = p_max_attempts,
               next_retry_at = now() + make_interval(secs => v_delay),
               last_error = p_error_message
         WHERE lead_id = p_lead_id
           AND processed_at IS NULL;

        IF NOT FOUND THEN
            INSERT INTO lead_routing_queue (
                id, lead_id, workspace_id, attempt_number, max_attempts,
                next_retry_at, last_error, error_count, created_at
            ) VALUES (
                gen_random_uuid(), p_lead_id, v_workspace, v_attempts, p_max_attempts,
                now() + make_interval(secs => v_delay), p_error_message, 0, now()
            );
        END IF;
    ELSE
        UPDATE leads
           SET routing_status = 'failed',
               routing_locked_by = NULL,
               routing_locked_at = NULL,
               routing_error = p_error_message,
               updated_at = now()
         WHERE id = p_lead_id;

        UPDATE lead_routing_queue
           SET processed_at = now(),
               last_error = p_error_message
         WHERE lead_id = p_lead_id
           AND processed_at IS NULL;

        INSERT INTO lead_routing_logs (
            id, lead_id, source_workspace_id, destination_workspace_id,
            matched_rule_id, routing_result, error_message, created_at
        ) VALUES (
            gen_random_uuid(), p_lead_id, v_workspace, NULL,
            NULL, 'failed', p_error_message, now()
        );
    END IF;

    RETURN true;
END;
$$;
"""

    check_cross_partner_duplicate = """
CREATE OR REPLACE FUNCTION check_cross_partner_duplicate(
    p_dedupe_hash text,
    p_source_workspace_id uuid
)
RETURNS TABLE (duplicate_lead_id uuid, duplicate_workspace_id uuid)
LANGUAGE sql
STABLE
AS $$
    SELECT l.id, l.workspace_id
      FROM leads l
     WHERE l.dedupe_hash = p_dedupe_hash
       AND l.workspace_id <> p_source_workspace_id
       AND l.routing_status = 'routed'
     ORDER BY l.routed_at NULLS LAST, l.created_at;
$$;
"""

    release_stale_routing_locks = f"""
CREATE OR REPLACE FUNCTION release_stale_routing_locks()
RETURNS integer
LANGUAGE plpgsql
AS $$
DECLARE
    v_released integer;
BEGIN
    UPDATE leads
       SET routing_status = 'pending',
           routing_locked_by = NULL,
           routing_locked_at = NULL,
           updated_at = now()
     WHERE routing_status = 'routing'
       AND routing_locked_at < now() - {lock_timeout};

    GET DIAGNOSTICS v_released = ROW_COUNT;
    RETURN v_released;
END;
$$;
"""

    mark_expired_leads = """
CREATE OR REPLACE FUNCTION mark_expired_leads()
RETURNS integer
LANGUAGE plpgsql
AS $$
DECLARE
    v_expired integer;
BEGIN
    WITH expired AS (
        UPDATE leads
           SET routing_status = 'expired',
               updated_at = now()
         WHERE routing_status = 'pending'
           AND lead_expires_at IS NOT NULL
           AND lead_expires_at < now()
        RETURNING id
    ), closed AS (
        UPDATE lead_routing_queue q
           SET processed_at = now()
          FROM expired e
         WHERE q.lead_id = e.id
           AND q.processed_at IS NULL
        RETURNING q.id
    )
    SELECT count(*) INTO v_expired FROM expired;

    RETURN v_expired;
END;
$$;
"""

    return [
        acquire_routing_lock,
        complete_routing,
        fail_routing,
        check_cross_partner_duplicate,
        release_stale_routing_locks,
        mark_expired_leads,
    ]


async def install_routing_functions(conn: AsyncConnection) -> None:
    """Install (or replace) every routing function on an open connection."""
    for ddl in routing_function_ddl(settings.ROUTING_LOCK_TIMEOUT_MINUTES):
        await conn.exec_driver_sql(ddl)

    logger.info(f"Installed {len(ROUTING_FUNCTION_NAMES)} routing functions")
