"""
Streamlit Frontend for Smart Ledger

One page: a card per record (bank balance, expenses, sales, orders,
reminders) with its inputs and a Save button, a header showing who is
signed in, and a toast for the result of the last action.

DESIGN PRINCIPLES:
1. Nothing is saved without an explicit "Save" click
2. Every save shows a success or error toast
3. A failed save keeps what the user typed
4. Realtime updates from other sessions replace the on-screen values

The dashboard runs on one background event loop per process so that
realtime subscriptions keep receiving updates between reruns. The
cards and the toast live in a fragment that re-renders every
REFRESH_SECONDS, so pushed values and expired toasts show up without
any user action.
"""

import asyncio
import html
import threading

import streamlit as st

from smart_ledger.config import get_settings, validate_all_settings
from smart_ledger.orchestrator import Dashboard, SectionView, create_app_components
from smart_ledger.services.identity import FLOW_PARAM


REFRESH_SECONDS = get_settings().app.refresh_seconds


# Page configuration
st.set_page_config(
    page_title="Smart Ledger",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="collapsed",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
    }
    .toast-success {
        padding: 10px 16px;
        background-color: #10b981;
        color: white;
        border-radius: 8px;
        margin: 10px 0;
    }
    .toast-error {
        padding: 10px 16px;
        background-color: #ef4444;
        color: white;
        border-radius: 8px;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop per process, running in a daemon thread."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    return loop


def run_async(coro):
    """Helper to run async functions on the background loop."""
    future = asyncio.run_coroutine_threadsafe(coro, get_event_loop())
    return future.result()


def get_dashboard() -> Dashboard:
    """Get or create this session's dashboard."""
    if "dashboard" not in st.session_state:
        dashboard = create_app_components()
        run_async(dashboard.start())
        st.session_state.dashboard = dashboard
    return st.session_state.dashboard


def field_key(entity: str, field: str) -> str:
    return f"{entity}.{field}"


def sync_widget_state(section: SectionView) -> None:
    """
    Copy draft values into widget state when the draft was replaced
    by a load or a realtime update since the last render.
    """
    revision_key = f"{section.entity.value}.__revision"
    if st.session_state.get(revision_key) == section.revision:
        return
    for field in section.fields:
        st.session_state[field_key(section.entity.value, field.name)] = str(field.value)
    st.session_state[revision_key] = section.revision


def on_edit(dashboard: Dashboard, entity: str, field: str) -> None:
    dashboard.edit(entity, field, st.session_state[field_key(entity, field)])


def render_toast(dashboard: Dashboard) -> None:
    notification = dashboard.presenter.current
    if notification is None:
        return
    css_class = "toast-error" if notification.is_error else "toast-success"
    st.markdown(
        f'<div class="{css_class}">{html.escape(notification.message)}</div>',
        unsafe_allow_html=True,
    )
    if st.button("Dismiss", key="toast.dismiss"):
        dashboard.presenter.dismiss()
        st.rerun()


def render_sign_in(dashboard: Dashboard) -> None:
    """Render the signed-out screen."""
    st.title("Smart Ledger")
    st.markdown("Please sign in to view your dashboard.")

    code = st.query_params.get("code")
    if code:
        flow_id = st.query_params.get(FLOW_PARAM)
        if run_async(dashboard.complete_sign_in(code, flow_id)):
            st.query_params.clear()
            st.rerun()

    provider = get_settings().supabase.oauth_provider
    if st.button(f"Continue with {provider.title()}", type="primary"):
        url = run_async(dashboard.sign_in(provider))
        if url:
            st.link_button("Open sign-in page", url)

    render_toast(dashboard)


def render_section(dashboard: Dashboard, section: SectionView) -> None:
    """Render one record card."""
    entity = section.entity.value
    sync_widget_state(section)

    with st.container(border=True):
        header, action = st.columns([3, 1])
        header.subheader(section.title)

        columns = st.columns(len(section.fields))
        for column, field in zip(columns, section.fields):
            with column:
                st.text_input(
                    field.label,
                    key=field_key(entity, field.name),
                    placeholder=field.placeholder or ("YYYY-MM-DD" if field.input_type == "date" else ""),
                    on_change=on_edit,
                    args=(dashboard, entity, field.name),
                )

        if action.button(
            section.save_label,
            key=f"{entity}.save",
            disabled=section.saving,
            type="primary",
        ):
            run_async(dashboard.save(entity))
            st.rerun(scope="fragment")


@st.fragment(run_every=REFRESH_SECONDS)
def render_live(dashboard: Dashboard) -> None:
    """Toast and record cards, re-rendered on a timer."""
    render_toast(dashboard)

    sections = dashboard.sections()
    left, right = st.columns(2)
    for index, section in enumerate(sections):
        with (left if index % 2 == 0 else right):
            render_section(dashboard, section)


def render_settings_status() -> None:
    """Sidebar block showing which backends are configured."""
    st.sidebar.markdown("### Settings")
    status = validate_all_settings()
    for name, label in [
        ("supabase", "Supabase"),
        ("rest", "REST API"),
        ("app", "App"),
    ]:
        if status.get(name):
            st.sidebar.success(f"✓ {label}")
        else:
            st.sidebar.error(f"✗ {label}: {status.get(f'{name}_error', 'invalid')}")


def render_activity(dashboard: Dashboard) -> None:
    """Recent activity events, newest first."""
    with st.sidebar.expander("Recent activity"):
        events = dashboard.activity.history[-20:]
        if not events:
            st.caption("No activity yet")
        for event in reversed(events):
            st.caption(
                f"{event.timestamp:%H:%M:%S} · {event.event_type.value} · {event.description}"
            )


def render_dashboard(dashboard: Dashboard) -> None:
    """Render the signed-in dashboard."""
    title, who, sign_out = st.columns([4, 2, 1])
    title.title("Smart Ledger")
    who.markdown(f"**{dashboard.owner_label}**")
    if dashboard.can_sign_in and sign_out.button("Sign out"):
        run_async(dashboard.sign_out())
        st.rerun()

    render_live(dashboard)

    st.sidebar.markdown("### Sync")
    st.sidebar.markdown(
        "🟢 Live updates on" if dashboard.supports_push else "⚪ Live updates off"
    )
    if st.sidebar.button("🔄 Reload"):
        run_async(dashboard.reload())
        st.rerun()

    render_settings_status()
    if get_settings().app.debug_mode:
        render_activity(dashboard)


def main():
    """Main application entry point."""
    dashboard = get_dashboard()

    if dashboard.auth_loading:
        st.markdown("Loading...")
        return

    if not dashboard.signed_in:
        render_sign_in(dashboard)
        return

    render_dashboard(dashboard)


if __name__ == "__main__":
    main()
