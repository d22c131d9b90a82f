"""
HTTP service: WhatsApp webhook, manual triggers, action links, staff reschedules and health.

The reminder loop (eager run at startup, then every REMINDER_INTERVAL_MINUTES)
and the daily cleanup at clinic midnight run inside the app lifespan.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .bootstrap import Services, build_services
from .database.link_db import ActionLinkError
from .services.calendar_service import CalendarError, CalendarNotAuthenticatedError
from .utils.config import config
from .utils.date_utils import format_appointment_time, seconds_until_midnight
from .utils.log_utils import configure_logging

logger = logging.getLogger(__name__)


class ActionRequest(BaseModel):
    action: str


class RescheduleRequest(BaseModel):
    event_id: str
    start: str
    end: Optional[str] = None


async def reminder_loop(services: Services, interval_minutes: int) -> None:
    while True:
        result = await services.scheduler.run_once()
        if result.aborted_reason:
            logger.info(f"Reminder run skipped: {result.aborted_reason}")
        await asyncio.sleep(interval_minutes * 60)


async def janitor_loop(services: Services, tz_name: Optional[str] = None) -> None:
    while True:
        await asyncio.sleep(seconds_until_midnight(tz_name=tz_name))
        await services.janitor.sweep()


def create_app(services: Services, start_loops: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tasks = []
        if start_loops:
            logger.info("Starting reminder and cleanup loops")
            tasks.append(asyncio.create_task(reminder_loop(services, config.REMINDER_INTERVAL_MINUTES)))
            tasks.append(asyncio.create_task(janitor_loop(services, config.CLINIC_TIMEZONE)))

        yield

        logger.info("Shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    app = FastAPI(title="Clinic Reminders", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.services = services

    @app.get("/webhook/whatsapp")
    async def verify_webhook(mode: Optional[str] = Query(None, alias="hub.mode"),
                             token: Optional[str] = Query(None, alias="hub.verify_token"),
                             challenge: Optional[str] = Query(None, alias="hub.challenge")):
        echoed = services.webhook.verify(mode, token, challenge)
        if echoed is None:
            raise HTTPException(status_code=403, detail="Verification failed")
        return PlainTextResponse(echoed)

    @app.post("/webhook/whatsapp")
    async def receive_webhook(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Webhook body is not JSON")
            return {"status": "ok", "handled": 0}
        handled = await services.webhook.handle_delivery(payload)
        return {"status": "ok", "handled": handled}

    @app.post("/send-reminders")
    async def send_reminders():
        result = await services.scheduler.run_once()
        return result.to_dict()

    @app.post("/cleanup")
    async def cleanup():
        return await services.janitor.sweep()

    @app.get("/conversations")
    async def list_conversations():
        records = await services.store.all()
        return {"count": len(records), "conversations": [r.to_dict() for r in records]}

    @app.get("/appointment/{token}")
    async def get_appointment(token: str):
        link = await services.link_store.get(token)
        if link is None:
            raise HTTPException(status_code=404, detail="Invalid or expired link")
        return {
            "patient_name": link.patient_name,
            "appointment_time": format_appointment_time(link.appointment_time),
            "used": link.used,
            "action": link.action,
            "actions": ["confirm", "reschedule"],
            "clinic_phone": config.CLINIC_PHONE,
        }

    @app.post("/appointment/{token}/action")
    async def appointment_action(token: str, body: ActionRequest):
        try:
            return await services.reply_handler.handle_link_action(token, body.action)
        except ActionLinkError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Action link {body.action} failed: {e}")
            raise HTTPException(status_code=500,
                                detail="Could not update your appointment. Please contact the clinic.")

    @app.post("/reschedule-event")
    async def reschedule_event(body: RescheduleRequest):
        try:
            event = await services.reply_handler.reschedule_event(body.event_id, body.start, body.end)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CalendarNotAuthenticatedError:
            raise HTTPException(status_code=401, detail="Google Calendar not authenticated")
        except CalendarError as e:
            logger.error(f"Error rescheduling event {body.event_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to reschedule event: {e}")
        return {"message": "Event rescheduled successfully", "event": event.to_dict()}

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "calendar_authenticated": services.calendar.is_authenticated(),
            "notifier": services.notifier.name,
            "notifier_configured": services.notifier.is_configured(),
            "active_conversations": await services.store.count(),
            "reminder_run_in_progress": services.scheduler.running,
        }

    return app


def main():
    import uvicorn

    configure_logging()
    config.validate_config()
    app = create_app(build_services())
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    main()
