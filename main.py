import streamlit as st
import asyncio
import logging
import pandas as pd

from clinic_reminders.bootstrap import build_services
from clinic_reminders.utils.config import config
from clinic_reminders.utils.date_utils import format_appointment_time
from clinic_reminders.utils.log_utils import configure_logging
from clinic_reminders.utils.phone import mask_phone

configure_logging()
logger = logging.getLogger(__name__)


def initialize_app():
    """Initialize the Streamlit app"""
    st.set_page_config(
        page_title="Clinic Reminders",
        page_icon="🏥",
        layout="wide",
        initial_sidebar_state="expanded"
    )


@st.cache_resource
def get_services():
    return build_services()


def display_header():
    st.title("🏥 Clinic Appointment Reminders")
    st.markdown(f"""
    Reminders go out for appointments in the next **{config.LOOKAHEAD_HOURS} hours**
    whose calendar title looks like `Name#Phone`. Patients reply to confirm or
    reschedule and the calendar title is updated for you.
    """)


def display_sidebar(services):
    with st.sidebar:
        st.header("🔧 System Status")

        missing = config.missing_settings()
        if not missing:
            st.success("✅ Configuration Valid")
        else:
            st.error("❌ Configuration Issues")
            for name in missing:
                st.write(f"• {name} is not set")

        st.write(f"📅 Calendar: {'connected' if services.calendar.is_authenticated() else 'not connected'}")
        st.write(f"💬 Channel: {services.notifier.name}"
                 f" ({'ready' if services.notifier.is_configured() else 'not configured'})")
        st.write(f"🌍 Timezone: {config.CLINIC_TIMEZONE}")
        st.write(f"📞 Default prefix: {config.DEFAULT_COUNTRY_PREFIX}")

        st.header("🏷️ Title Markers")
        st.write("🔔 reminder sent")
        st.write("✅ confirmed by patient")
        st.write("❓ patient asked to reschedule")


def display_send_panel(services):
    st.subheader("Send Reminders Now")
    st.caption(f"The server also runs this every {config.REMINDER_INTERVAL_MINUTES} minutes.")

    if st.button("📨 Send reminders"):
        with st.spinner("Checking the calendar..."):
            result = asyncio.run(services.scheduler.run_once())

        if result.aborted_reason:
            st.warning(f"Run skipped: {result.aborted_reason}")
            return

        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Sent", result.sent_count)
        with col2:
            st.metric("Failed", result.failed_count)
        with col3:
            st.metric("Skipped", result.skipped_count)

        if result.results:
            df = pd.DataFrame([r.to_dict() for r in result.results])
            df["phone"] = df["phone"].map(mask_phone)
            st.dataframe(df[["title", "status", "patient_name", "phone", "reason", "error"]].rename(columns={
                "title": "Event", "status": "Status", "patient_name": "Patient",
                "phone": "Phone", "reason": "Reason", "error": "Error"
            }))
        else:
            st.info("No appointments needed a reminder.")


def display_conversations(services):
    st.subheader("Waiting for a Reply")
    try:
        records = asyncio.run(services.store.all())
    except Exception as e:
        st.error(f"Error loading conversations: {e}")
        return

    if not records:
        st.info("No patients are waiting to reply.")
        return

    df = pd.DataFrame([r.to_dict() for r in records])
    df["appointment_time"] = df["appointment_time"].map(format_appointment_time)
    df["normalized_phone"] = df["normalized_phone"].map(mask_phone)
    df["created_at"] = pd.to_datetime(df["created_at"]).dt.strftime("%d/%m %H:%M")
    st.dataframe(df[["patient_name", "normalized_phone", "appointment_time", "created_at"]].rename(columns={
        "patient_name": "Patient", "normalized_phone": "Phone",
        "appointment_time": "Appointment", "created_at": "Reminded"
    }))


def display_cleanup(services):
    st.subheader("Cleanup")
    st.caption(f"Conversations and action links older than {config.RETENTION_DAYS} days are removed nightly.")
    if st.button("🧹 Run cleanup now"):
        removed = asyncio.run(services.janitor.sweep())
        st.success(f"Removed {removed['conversations_removed']} conversation(s) "
                   f"and {removed['links_removed']} link(s).")


def display_reschedule(services):
    st.subheader("Move an Appointment")
    st.caption("Times are clinic-local unless they carry an offset. The status marker in the title is kept.")
    event_id = st.text_input("Calendar event ID:")
    start = st.text_input("New start (e.g. 2026-10-22T10:00):")
    end = st.text_input("New end (leave blank to keep the current length):")
    if st.button("📅 Reschedule"):
        if not event_id or not start:
            st.warning("Event ID and new start are required.")
            return
        try:
            event = asyncio.run(services.reply_handler.reschedule_event(event_id.strip(), start.strip(),
                                                                       end.strip() or None))
        except ValueError as e:
            st.error(f"Invalid time: {e}")
            return
        except Exception as e:
            st.error(f"Error rescheduling event: {e}")
            return
        st.success(f"{event.title} moved to {format_appointment_time(event.start_time)}")


def main():
    initialize_app()
    services = get_services()

    display_header()
    display_sidebar(services)

    send_tab, conversations_tab, reschedule_tab, cleanup_tab = st.tabs(
        ["📨 Reminders", "💬 Conversations", "📅 Reschedule", "🧹 Cleanup"]
    )
    with send_tab:
        display_send_panel(services)
    with conversations_tab:
        display_conversations(services)
    with reschedule_tab:
        display_reschedule(services)
    with cleanup_tab:
        display_cleanup(services)


if __name__ == "__main__":
    main()
