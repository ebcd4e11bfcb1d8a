from datetime import timedelta
import logging

import pytest
from sqlalchemy import select

from unicornx.core.logging import CtxFilter, request_id_var
from unicornx.models import Subscription
from unicornx.scheduler.jobs import build_scheduler, expire_overdue_job


@pytest.mark.asyncio
async def test_expire_job_commits(session_factory, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    await make_subscription(uid, pid, end_in=timedelta(seconds=-1), session_id="cs_dead")
    await make_subscription(uid, pid, session_id="cs_live", status="CANCELLED")

    assert await expire_overdue_job(session_factory) == 1
    assert await expire_overdue_job(session_factory) == 0

    async with session_factory() as s:
        statuses = sorted(x.status for x in (await s.execute(select(Subscription))).scalars())
    assert statuses == ["CANCELLED", "EXPIRED"]


def test_scheduler_registers_sweep():
    scheduler = build_scheduler()
    job = scheduler.get_job("expire_overdue_job")
    assert job is not None
    assert job.max_instances == 1


def test_ctx_filter_fills_request_id():
    record = logging.LogRecord("unicornx", logging.INFO, __file__, 1, "hi", None, None)
    token = request_id_var.set("rid-123")
    try:
        assert CtxFilter().filter(record) is True
    finally:
        request_id_var.reset(token)
    assert record.rid == "rid-123"
    assert record.user_id == "-"
    assert record.session_id == "-"
