import locale
import logging

import matplotlib.pyplot as plt
import pandas as pd
import streamlit as st

from charts import render_chart
from dashboard_state import CHART_TYPES, DashboardState
from data_pipeline import CSVParseError, humanize_key, read_csv_records
from llm_client import LLMError, ask_question, fetch_summary, is_access_granted, review_data
from settings import load_settings

# ================== CONFIG ==================
st.set_page_config(page_title="TrendLens: CSV Dashboard", page_icon="📊", layout="wide")
settings = load_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("trendlens")

try:
    locale.setlocale(locale.LC_COLLATE, "")
except locale.Error:
    logger.warning("System locale unavailable; text keys sort by code point")

SUMMARY_FAILED = "Failed to fetch AI summary. Check API key and network connection."
ANSWER_FAILED = "Failed to get answer. Please try again."
REVIEW_FAILED = "Failed to review the data. Check API key and network connection."
CHART_LABELS = {"bar": "📊 Bar Chart", "line": "📈 Line Chart"}


# ================== HELPERS ==================
def get_state() -> DashboardState:
    if "dashboard" not in st.session_state:
        st.session_state["dashboard"] = DashboardState(
            max_points=settings.max_points,
            excluded_keys=settings.excluded_keys,
        )
    return st.session_state["dashboard"]


def handle_upload(state: DashboardState, uploaded) -> None:
    """Parse a newly selected file into the state; a parse error leaves no dataset."""
    state.reset(uploaded.name)
    try:
        records = read_csv_records(uploaded.getvalue())
    except CSVParseError as e:
        logger.exception("CSV parse failed for %r", uploaded.name)
        state.error = f"CSV Parsing Error: {e}"
        return
    state.load(records, uploaded.name)


def format_review(review: dict) -> str:
    lines = [f"- {issue}" for issue in review["issues"]] or ["- No issues found."]
    return "\n".join(lines) + f"\n\n**Advice:** {review['advice']}"


def run_summary(state: DashboardState, display) -> None:
    if not display:
        state.summary.fail("Please upload data first.")
        return
    state.summary.begin()
    with st.spinner("Analyzing…"):
        try:
            state.summary.resolve(fetch_summary(display, state.x_key, state.y_key, settings))
        except LLMError:
            logger.exception("Summary request failed")
            state.summary.fail(SUMMARY_FAILED)


def run_question(state: DashboardState, question: str, display) -> None:
    if not question.strip():
        return
    state.answer.begin()
    with st.spinner("Thinking…"):
        try:
            state.answer.resolve(ask_question(question, display, settings))
        except LLMError:
            logger.exception("Question request failed")
            state.answer.resolve(ANSWER_FAILED)


def run_review(state: DashboardState, display) -> None:
    state.review.begin()
    with st.spinner("Reviewing…"):
        try:
            state.review.resolve(format_review(review_data(display, settings)))
        except LLMError:
            logger.exception("Review request failed")
            state.review.fail(REVIEW_FAILED)


# ================== SIDEBAR ==================
state = get_state()

with st.sidebar:
    st.header("📦 Data Source")
    uploaded_file = st.file_uploader("Upload CSV Data File", type=["csv"])

    st.divider()
    st.header("🔐 AI Access")
    password = st.text_input("AI Password", type="password", placeholder="Enter password")
    access_granted = is_access_granted(password, settings)
    if password:
        st.caption("✅ Access granted" if access_granted else "❌ Wrong password")

if uploaded_file is not None:
    file_token = (getattr(uploaded_file, "file_id", None), uploaded_file.name, uploaded_file.size)
    if st.session_state.get("loaded_file") != file_token:
        st.session_state["loaded_file"] = file_token
        handle_upload(state, uploaded_file)

# ================== MAIN UI ==================
st.title(f"📊 {state.title}" if state.title else "📊 TrendLens")

if state.error:
    st.error(state.error)

display = state.display
chart_col, ai_col = st.columns(2)

with chart_col:
    st.subheader("Visualization")
    if state.is_sampled:
        st.caption(f"Showing {len(display)} of {len(state.raw)} points")

    if state.keys:
        c1, c2, c3 = st.columns(3)
        chart_type = c1.selectbox("Chart type", CHART_TYPES,
                                  index=CHART_TYPES.index(state.chart_type),
                                  format_func=CHART_LABELS.get)
        x_key = c2.selectbox("X axis", state.keys,
                             index=state.keys.index(state.x_key) if state.x_key in state.keys else 0,
                             format_func=lambda k: f"X: {humanize_key(k)}")
        y_key = c3.selectbox("Y axis", state.keys,
                             index=state.keys.index(state.y_key) if state.y_key in state.keys else 0,
                             format_func=lambda k: f"Y: {humanize_key(k)}")
        state.select_chart_type(chart_type)
        state.select_x(x_key)
        state.select_y(y_key)
        display = state.display

    if display:
        fig = render_chart(display, state.x_key, state.y_key, state.chart_type)
        st.pyplot(fig, use_container_width=True, clear_figure=True)
        plt.close(fig)
        with st.expander("Display data"):
            st.dataframe(pd.DataFrame(display), use_container_width=True)
    else:
        st.info("Upload a CSV file to see the chart.")

with ai_col:
    st.subheader("✨ AI Trend Analysis")
    if st.button("Generate Summary", type="primary",
                 disabled=not display or state.summary.loading or not access_granted):
        run_summary(state, display)
    if state.summary.error:
        st.error(state.summary.error)
    elif state.summary.text:
        st.write(state.summary.text)
    else:
        st.caption('Click "Generate Summary" to get an AI analysis of your uploaded data.')

    st.markdown("#### 💬 Ask a Custom Question")
    question = st.text_area("Question", placeholder="Ask anything about your data... (e.g., 'What patterns do you see?')",
                            height=100, label_visibility="collapsed")
    if st.button("Ask Question",
                 disabled=not question.strip() or not display or state.answer.loading or not access_granted):
        run_question(state, question, display)
    if state.answer.text:
        st.info(state.answer.text)

    with st.expander("🩺 Data quality review"):
        if st.button("Review data", disabled=not display or state.review.loading or not access_granted):
            run_review(state, display)
        if state.review.error:
            st.error(state.review.error)
        elif state.review.text:
            st.markdown(state.review.text)
