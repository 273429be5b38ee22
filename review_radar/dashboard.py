"""
Review Radar — stream console.
Run with: streamlit run review_radar/dashboard.py  (the API must be running)

Type app IDs or store URLs ("com.spotify.music vs 324684580"). The console posts
them to /api/chat, folds the NDJSON stream through the client reducer and renders
what it has so far; when the stream ends it draws the full report.
"""

import json

import pandas as pd
import plotly.graph_objects as go
import requests
import streamlit as st

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from review_radar.config import API_URL, DASHBOARD_USER_ID
from review_radar.identifiers import extract_app_ids
from review_radar.reducer import ClientState, StreamReducer, reduce

# ============================================================
# PAGE CONFIG
# ============================================================
st.set_page_config(
    page_title="Review Radar",
    page_icon="◆",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ============================================================
# STYLING
# ============================================================
CUSTOM_CSS = """
<style>
@import url('https://fonts.googleapis.com/css2?family=Inter:wght@300;400;500;600;700&display=swap');
html, body, [class*="css"] { font-family: 'Inter', -apple-system, BlinkMacSystemFont, sans-serif; }

footer {visibility: hidden;}
#MainMenu {visibility: hidden;}

:root {
    --bg-elevated: #2d2b26;
    --border: rgba(255,235,205,0.08);
    --text-primary: #e8e0d5;
    --text-secondary: #9c9588;
    --accent: #d97757;
}

[data-testid="stMetric"] {
    background: var(--bg-elevated);
    border: 1px solid var(--border); border-radius: 14px;
    padding: 18px 22px; box-shadow: 0 2px 12px rgba(0,0,0,0.2);
}
[data-testid="stMetric"] label {
    color: var(--text-secondary) !important; font-weight: 500; font-size: 0.72rem;
    text-transform: uppercase; letter-spacing: 0.06em;
}
[data-testid="stSidebar"] {
    background: linear-gradient(180deg, #16140f 0%, #1f1d18 100%);
    border-right: 1px solid var(--border);
}
[data-testid="stChatMessage"] { border-radius: 12px; border: 1px solid var(--border); }
.streamlit-expanderHeader { font-weight: 500; border-radius: 10px; }
hr { border-color: var(--border); }
</style>
"""

st.markdown(CUSTOM_CSS, unsafe_allow_html=True)


def apply_chart_style(fig):
    fig.update_layout(
        font=dict(family="Inter, sans-serif", color="#9c9588"),
        paper_bgcolor="rgba(0,0,0,0)", plot_bgcolor="rgba(0,0,0,0)",
        title_font=dict(size=14, color="#e8e0d5"),
        xaxis=dict(gridcolor="rgba(255,235,205,0.04)", linecolor="rgba(255,235,205,0.08)",
                   tickfont=dict(color="#9c9588")),
        yaxis=dict(gridcolor="rgba(255,235,205,0.04)", linecolor="rgba(255,235,205,0.08)",
                   tickfont=dict(color="#9c9588")),
        legend=dict(font=dict(color="#9c9588", size=10)),
        margin=dict(l=40, r=20, t=45, b=35),
    )
    return fig


# ============================================================
# SESSION STATE
# ============================================================
def _init_state():
    st.session_state.setdefault("conversation", [])   # [{role, content}] sent to the API
    st.session_state.setdefault("turns", [])          # [{"prompt": str, "events": [...]}]


def _reset_conversation():
    for k in ["conversation", "turns"]:
        st.session_state.pop(k, None)


# ============================================================
# STREAM CLIENT
# ============================================================
class StreamRequestError(Exception):
    pass


def stream_events(api_url: str, user_id: str, payload: dict):
    """POST to /api/chat and yield each NDJSON event as it arrives."""
    with requests.post(
        f"{api_url}/api/chat",
        json=payload,
        headers={"X-User-Id": user_id},
        stream=True,
        timeout=(10, 600),
    ) as resp:
        if resp.status_code != 200:
            try:
                message = resp.json().get("error", resp.text)
            except ValueError:
                message = resp.text
            raise StreamRequestError(f"{resp.status_code}: {message}")
        for line in resp.iter_lines(decode_unicode=True):
            if line:
                yield json.loads(line)


# ============================================================
# RENDERING
# ============================================================
def render_status(state: ClientState):
    if not state.status_message:
        return
    if state.status == "error":
        st.warning(state.status_message)
    elif state.status == "completed":
        st.caption(f"✓ {state.status_message}")
    else:
        waiting = []
        if state.loading_app_ids:
            waiting.append(f"fetching {', '.join(sorted(state.loading_app_ids))}")
        if state.show_analysis_skeleton:
            waiting.append("analyzing reviews")
        if state.show_comparison_skeleton:
            waiting.append("comparing apps")
        suffix = f" ({'; '.join(waiting)})" if waiting else ""
        st.info(f"{state.status_message}{suffix}")


def render_app_cards(apps: list):
    if not apps:
        return
    cols = st.columns(min(len(apps), 4))
    for i, app in enumerate(apps):
        with cols[i % len(cols)]:
            st.markdown(f"**{app.get('name') or app.get('appId')}**")
            st.caption(f"{app.get('developer', '')} · {app.get('platform', '').replace('_', ' ')}")
            score = app.get("score") or 0
            st.metric("Rating", f"{score:.1f} ★", help=f"{app.get('ratings', 0):,} ratings")


def render_analysis(analysis: dict):
    overview = analysis.get("overview", {})
    with st.expander(f"📊 {analysis.get('appName', analysis.get('appId'))}", expanded=False):
        st.markdown(f"**Market position:** {overview.get('marketPosition', '')}")
        st.markdown(f"**Target users:** {overview.get('targetDemographic', '')}")
        c1, c2 = st.columns(2)
        with c1:
            st.markdown("**Strengths**")
            for s in overview.get("strengths", []):
                st.markdown(f"- {s}")
        with c2:
            st.markdown("**Weaknesses**")
            for w in overview.get("weaknesses", []):
                st.markdown(f"- {w}")

        features = analysis.get("featureAnalysis", [])
        if features:
            df = pd.DataFrame(features)[["feature", "sentimentScore", "mentionCount", "improvementPriority"]]
            st.dataframe(df, use_container_width=True, hide_index=True)

        actions = analysis.get("recommendedActions", [])
        if actions:
            st.markdown("**Recommended actions**")
            for a in actions:
                st.markdown(f"- **[{a.get('priority')}]** {a.get('action')}")


def chart_feature_coverage(rows: list, key: str):
    if not rows:
        return
    top = rows[:12]
    fig = go.Figure(go.Bar(
        x=[r["appCoverage"] * 100 for r in top],
        y=[r["feature"] for r in top],
        orientation="h",
        marker=dict(
            color=[r["averageSentiment"] for r in top],
            colorscale=[[0, "#c45c4a"], [0.5, "#c9a85c"], [1, "#5a9e6f"]],
            cmin=-1, cmax=1, colorbar=dict(title="Sentiment"),
        ),
        text=[f"{r['totalMentions']} mentions" for r in top], textposition="outside",
        textfont=dict(color="#9c9588", size=10),
    ))
    fig.update_layout(title="Feature coverage across apps", height=420,
                      xaxis_title="% of apps", yaxis=dict(autorange="reversed"))
    apply_chart_style(fig)
    st.plotly_chart(fig, use_container_width=True, key=key)


def render_comparison(comparison: dict, key: str):
    st.markdown("#### Comparison")
    st.dataframe(pd.DataFrame(comparison.get("apps", [])), use_container_width=True, hide_index=True)
    chart_feature_coverage(comparison.get("featureComparison", []), key=f"{key}_features")

    c1, c2 = st.columns(2)
    with c1:
        st.markdown("**Shared strengths**")
        for s in comparison.get("strengthsComparison", {}).get("common", []):
            st.markdown(f"- {s['strength']} _({', '.join(s['apps'])})_")
    with c2:
        st.markdown("**Shared weaknesses**")
        for w in comparison.get("weaknessesComparison", {}).get("common", []):
            st.markdown(f"- {w['weakness']} _({', '.join(w['apps'])})_")

    pricing = comparison.get("pricingComparison", [])
    if pricing:
        st.markdown("**Pricing perception**")
        st.dataframe(pd.DataFrame(pricing), use_container_width=True, hide_index=True)

    plan = comparison.get("recommendationSummary", [])
    if plan:
        st.markdown("**Action plan**")
        for step in plan:
            st.markdown(f"- {step}")


def render_state(state: ClientState, key: str, final: bool = True):
    render_status(state)
    render_app_cards(state.apps)
    for analysis in state.analyses:
        render_analysis(analysis)
    if state.comparison and final:
        render_comparison(state.comparison, key)
    elif state.show_comparison_skeleton:
        st.caption("Comparison in progress...")
    if state.narrative:
        st.markdown("---")
        st.markdown(state.narrative)


# ============================================================
# MAIN
# ============================================================
def render_sidebar():
    st.sidebar.markdown("""
    <div style="text-align:center; padding:0.5rem 0 0.3rem;">
        <span style="color:#d97757; font-size:1.4rem;">◆</span>
        <span style="font-size:1.1rem; font-weight:700; color:#e8e0d5; margin-left:6px;">Review Radar</span>
    </div>""", unsafe_allow_html=True)
    st.sidebar.markdown("---")
    api_url = st.sidebar.text_input("API URL", value=API_URL)
    user_id = st.sidebar.text_input("User ID", value=DASHBOARD_USER_ID)
    st.sidebar.markdown("---")
    if st.sidebar.button("New comparison", use_container_width=True, key="btn_reset"):
        _reset_conversation()
        st.rerun()
    return api_url, user_id


def run_turn(api_url: str, user_id: str, prompt: str):
    conversation = st.session_state.conversation
    if not conversation:
        # First turn creates the analysis (and grants access to its apps)
        payload = {"appStoreIds": extract_app_ids(prompt)}
    else:
        payload = {"messages": conversation + [{"role": "user", "content": prompt}]}

    reducer = StreamReducer()
    events = []
    placeholder = st.empty()
    try:
        for event in stream_events(api_url, user_id, payload):
            events.append(event)
            reducer.feed(event)
            with placeholder.container():
                render_state(reducer.state, key="live", final=False)
    except (requests.RequestException, StreamRequestError) as e:
        st.error(f"Request failed: {e}")
        return

    placeholder.empty()
    conversation.append({"role": "user", "content": prompt})
    conversation.append({"role": "assistant", "content": reducer.state.narrative})
    st.session_state.turns.append({"prompt": prompt, "events": events})
    st.rerun()


def main():
    _init_state()
    api_url, user_id = render_sidebar()

    st.markdown("""
    <div style="display:flex; align-items:center; gap:10px; margin-bottom:0.2rem;">
        <span style="font-size:1.3rem; color:#d97757;">◆</span>
        <span style="font-size:1.3rem; font-weight:700; color:#e8e0d5;">Competitive review analysis</span>
    </div>""", unsafe_allow_html=True)

    for i, turn in enumerate(st.session_state.turns):
        with st.chat_message("user"):
            st.markdown(turn["prompt"])
        with st.chat_message("assistant"):
            render_state(reduce(turn["events"]), key=f"turn_{i}")

    prompt = st.chat_input("App IDs or store URLs, e.g. com.spotify.music vs 324684580")
    if prompt:
        with st.chat_message("user"):
            st.markdown(prompt)
        with st.chat_message("assistant"):
            run_turn(api_url, user_id, prompt)


if __name__ == "__main__":
    main()
