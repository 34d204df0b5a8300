# tests/test_scheduler.py
"""Tests for scheduler job registration and job bodies"""

import pytest
from unittest.mock import AsyncMock, patch

from leadrouter import scheduler as scheduler_module
from leadrouter.schemas.routing import RetryQueueResult


class TestScheduler:

    def test_start_registers_routing_jobs(self):
        """Test the three routing jobs are registered with max_instances=1"""
        with patch.object(scheduler_module, "scheduler") as mock_scheduler:
            mock_scheduler.running = False
            mock_scheduler.get_jobs.return_value = []

            scheduler_module.start_scheduler()

            job_ids = [c.kwargs["id"] for c in mock_scheduler.add_job.call_args_list]
            assert job_ids == ["routing_retry_queue", "routing_stale_locks", "lead_expiry"]
            assert all(c.kwargs["max_instances"] == 1 for c in mock_scheduler.add_job.call_args_list)
            mock_scheduler.start.assert_called_once()

    def test_start_is_noop_when_running(self):
        with patch.object(scheduler_module, "scheduler") as mock_scheduler:
            mock_scheduler.running = True

            scheduler_module.start_scheduler()

            mock_scheduler.add_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_job_swallows_errors(self):
        """Test a failing retry run never propagates into the scheduler"""
        with patch("leadrouter.services.lead_routing_service.create_lead_routing_service",
                   side_effect=RuntimeError("db down")):
            await scheduler_module.process_routing_retry_queue()

    @pytest.mark.asyncio
    async def test_retry_job_runs_processor(self):
        with patch("leadrouter.services.lead_routing_service.create_lead_routing_service"), \
             patch("leadrouter.services.retry_queue.RetryQueueProcessor") as processor_cls:
            processor_cls.return_value.process_retry_queue = AsyncMock(return_value=RetryQueueResult())

            await scheduler_module.process_routing_retry_queue()

            processor_cls.return_value.process_retry_queue.assert_awaited_once()
