# app.py — MPC QA
# streamlit run app.py

from __future__ import annotations

import datetime as dt
from typing import Dict, List

import pandas as pd
import streamlit as st

from mpcqa import config
from mpcqa.api import ResultsClient
from mpcqa.baseline import baseline_summary
from mpcqa.catalog import BEAM_METRICS, GEO_METRICS, MLC_BACKLASH_METRIC, MLC_LEAF_METRIC, format_value
from mpcqa.doc import DocFactorService
from mpcqa.engine import QAEngine
from mpcqa.errors import MpcQaError, ValidationError
from mpcqa.graph import plot_metric_trend
from mpcqa.log import configure_logging
from mpcqa.models import CheckResult, Threshold
from mpcqa.series import available_metrics, series_frame
from mpcqa.settings import JsonSettingsStore
from mpcqa.thresholds import ThresholdResolver, ThresholdService

# =============================================================================
# App identity
# =============================================================================
APP_VERSION = "0.1.0"
APP_NAME = "MPC QA"
APP_SHORT_NAME = "MPC QA"

st.set_page_config(
    page_title=APP_SHORT_NAME,
    page_icon="🎯",
    layout="wide",
    initial_sidebar_state="expanded",
)

configure_logging()

SETTINGS = JsonSettingsStore()
CLIENT = ResultsClient()
ENGINE = QAEngine(CLIENT, SETTINGS)

# =============================================================================
# Theme + CSS
# =============================================================================
LIGHT = {
    "bg": "#f5f7fa",
    "panel": "#ffffff",
    "border": "#e5e7eb",
    "text": "#111827",
    "muted": "#4b5563",
}
DARK = {
    "bg": "#0f172a",
    "panel": "#111827",
    "border": "#1f2937",
    "text": "#f3f4f6",
    "muted": "#9ca3af",
}


def build_theme() -> dict:
    s = SETTINGS.load()
    base = DARK if s.theme == "dark" else LIGHT
    return {
        **base,
        "accent": s.accent_color,
        "success": "#0f766e",
        "warn": "#b45309",
        "danger": "#b91c1c",
    }


def inject_css(t: dict) -> None:
    st.markdown(
        f"""
<style>
:root {{
  --accent: {t["accent"]};
  --bg: {t["bg"]};
  --panel: {t["panel"]};
  --border: {t["border"]};
  --text: {t["text"]};
  --muted: {t["muted"]};
  --success: {t["success"]};
  --warn: {t["warn"]};
  --danger: {t["danger"]};
  --radius: 16px;
  --shadow: 0 6px 18px rgba(17, 24, 39, 0.06);
}}

.stApp {{ background: var(--bg); color: var(--text); }}
footer {{ visibility: hidden; }}

.block-container {{
  padding-top: 1.0rem !important;
  padding-bottom: 2.0rem !important;
  max-width: 1280px;
}}

section[data-testid="stSidebar"] {{
  background: linear-gradient(180deg, var(--accent), rgba(17,24,39,0.96));
}}
section[data-testid="stSidebar"] * {{ color: rgba(255,255,255,0.92) !important; }}

.sidebar-card {{
  background: rgba(255,255,255,0.06);
  border: 1px solid rgba(255,255,255,0.10);
  border-radius: 14px;
  padding: 12px 12px;
  margin: 10px 0 10px 0;
}}
.sidebar-card h4 {{ margin: 0 0 8px 0; font-size: 0.95rem; font-weight: 850; }}

.topbar {{
  display: flex;
  align-items: center;
  justify-content: space-between;
  gap: 16px;
  padding: 14px 16px;
  background: var(--panel);
  border: 1px solid var(--border);
  border-radius: var(--radius);
  box-shadow: var(--shadow);
}}
.brand-title {{ font-size: 1.05rem; font-weight: 900; color: var(--text); }}
.brand-sub {{ font-size: 0.90rem; color: var(--muted); }}
.badge {{
  display:inline-flex;
  align-items:center;
  border-radius:999px;
  padding:6px 10px;
  border:1px solid var(--border);
  font-size:0.85rem;
  margin-left:6px;
  color: var(--text);
}}

.section-title {{ font-size: 1.15rem; font-weight: 900; margin: 1.0rem 0 0.2rem 0; color: var(--text); }}
.section-sub {{ color: var(--muted); margin-bottom: 0.6rem; }}

.status-banner {{
  padding: 0.85rem 1rem;
  border-radius: 0.85rem;
  border: 1px solid var(--border);
  margin: 0.5rem 0 0.75rem 0;
  background: var(--panel);
  box-shadow: var(--shadow);
}}
.status-banner.muted {{ color: var(--muted); }}
.status-banner.warning {{ border-color: rgba(180,83,9,0.35); color: var(--warn); }}
.status-chip {{
  display:inline-flex;
  border-radius:999px;
  padding:3px 10px;
  border:1px solid var(--border);
  font-size:0.80rem;
  margin-left:8px;
}}
.status-chip.pass {{ background: rgba(15,118,110,0.10); color: var(--success); }}
.status-chip.fail {{ background: rgba(185,28,28,0.10); color: var(--danger); }}

button[data-baseweb="tab"][aria-selected="true"] {{
  color: var(--accent) !important;
  border-bottom-color: var(--accent) !important;
}}
</style>
""",
        unsafe_allow_html=True,
    )


inject_css(build_theme())

# =============================================================================
# State management
# =============================================================================
def ensure_state() -> None:
    defaults = {
        "machine_id": None,
        "selected_date": dt.date.today(),
        "graph_days": config.DEFAULT_GRAPH_DAYS,
        "selected_metrics": [],
        "reviewer_name": "",
        "show_deltas": False,
        "geo_easy_mode": True,
    }
    for k, v in defaults.items():
        st.session_state.setdefault(k, v)


ensure_state()

# =============================================================================
# Cached reads (short TTL: the service is the source of truth)
# =============================================================================
@st.cache_data(ttl=300, show_spinner=False)
def load_machines():
    return CLIENT.list_machines()


@st.cache_data(ttl=300, show_spinner=False)
def load_variants():
    return CLIENT.list_beam_variants()


@st.cache_data(ttl=60, show_spinner=False)
def load_range(machine_id: str, start: dt.date, end: dt.date):
    return CLIENT.list_beam_checks(machine_id, start, end), CLIENT.list_geo_checks(machine_id, start, end)


def _clear_caches() -> None:
    load_machines.clear()
    load_variants.clear()
    load_range.clear()


# =============================================================================
# Helpers
# =============================================================================
def _status_chip(status: str) -> str:
    s = (status or "").upper()
    cls = "pass" if s == "PASS" else "fail"
    return f'<span class="status-chip {cls}">{s or "—"}</span>'


def _banner(message: str, tone: str) -> None:
    st.markdown(f'<div class="status-banner {tone}">{message}</div>', unsafe_allow_html=True)


def metrics_frame(group: CheckResult) -> pd.DataFrame:
    rows = [
        {
            "Metric": m.name,
            "Value": format_value(m.name, m.value),
            "Threshold": m.thresholds,
            "Absolute": m.absolute_value,
            "Status": m.status.upper(),
        }
        for m in group.metrics
    ]
    return pd.DataFrame(rows, columns=["Metric", "Value", "Threshold", "Absolute", "Status"])


def render_group(group: CheckResult) -> None:
    header = f"{group.name} — {group.status}"
    with st.expander(header, expanded=(group.status == "FAIL")):
        st.markdown(_status_chip(group.status), unsafe_allow_html=True)
        if group.approved_by:
            st.caption(f"Approved by {group.approved_by} • {group.approved_date or ''}")
        if not group.metrics:
            st.caption("No values recorded.")
            return
        st.dataframe(metrics_frame(group), use_container_width=True, hide_index=True)


def render_topbar(machine_name: str, day: dt.date) -> None:
    st.markdown(
        f"""
<div class="topbar">
  <div class="brand">
    <div class="brand-title">{APP_NAME} <span class="badge">v{APP_VERSION}</span></div>
    <div class="brand-sub">Daily results • Trends • Thresholds & DOC factors</div>
  </div>
  <div>
    <span class="badge">{machine_name}</span>
    <span class="badge">{day.isoformat()}</span>
  </div>
</div>
""",
        unsafe_allow_html=True,
    )


# =============================================================================
# Sidebar
# =============================================================================
with st.sidebar:
    st.markdown(f"### {APP_SHORT_NAME}")
    st.caption("Machine Performance Check review")

    if not config.API_URL:
        st.error("MPCQA_API_URL is not set; the results service cannot be reached.")
        st.stop()

    try:
        machines = load_machines()
    except MpcQaError as e:
        st.error(f"Error loading machines: {e}")
        st.stop()

    if not machines:
        st.warning("No machines available")
        st.stop()

    st.markdown('<div class="sidebar-card"><h4>Machine & date</h4></div>', unsafe_allow_html=True)
    machine_ids = [m.id for m in machines]
    names = {m.id: m.name for m in machines}
    current = st.session_state.get("machine_id")
    machine_id = st.selectbox(
        "Machine",
        options=machine_ids,
        index=machine_ids.index(current) if current in machine_ids else 0,
        format_func=lambda i: names.get(i, i),
    )
    if machine_id != current:
        st.session_state["machine_id"] = machine_id
        st.session_state["selected_metrics"] = []

    selected_date = st.date_input("Date", value=st.session_state["selected_date"])
    st.session_state["selected_date"] = selected_date

    st.session_state["graph_days"] = int(
        st.number_input("Trend window (days)", min_value=1, max_value=365, value=int(st.session_state["graph_days"]))
    )
    st.session_state["reviewer_name"] = st.text_input("Reviewer", value=st.session_state["reviewer_name"])

    if st.button("Refresh data", use_container_width=True):
        _clear_caches()
        st.toast("Reloaded from the results service.", icon="🔁")

    st.markdown("---")
    st.caption(f"Version {APP_VERSION}")

# =============================================================================
# Header
# =============================================================================
render_topbar(names.get(machine_id, machine_id), selected_date)

tab_daily, tab_trends, tab_settings = st.tabs(["📋 Daily Results", "📈 Trends", "⚙️ Settings"])

# =============================================================================
# TAB 1: DAILY RESULTS
# =============================================================================
with tab_daily:
    st.markdown('<div class="section-title">Results</div>', unsafe_allow_html=True)
    st.markdown(
        f'<div class="section-sub">Beam and geometry checks for {selected_date:%d %b %Y}.</div>',
        unsafe_allow_html=True,
    )
    try:
        with st.spinner("Loading checks…"):
            day = ENGINE.aggregate_day(machine_id, selected_date)
    except MpcQaError as e:
        st.error(f"Error loading data: {e}")
        day = None

    if day is not None:
        left, right = st.columns(2, gap="large")
        with left:
            st.markdown("**Beam Checks**")
            for g in day.beam_groups:
                render_group(g)
            if not day.beam_groups:
                st.caption("No beam variants configured.")
        with right:
            st.markdown("**Geometry Check**")
            for g in day.geo_groups:
                render_group(g)
            if not day.geo_groups:
                st.caption("No geometry check recorded for this day.")

        with st.container(border=True):
            st.markdown("**Sign-off**")
            reviewer = st.session_state["reviewer_name"].strip()
            groups = list(day.beam_groups) + list(day.geo_groups)
            pending = [g for g in groups if g.source_id and not g.approved_by]
            st.caption(f"{len(pending)} group(s) awaiting approval.")
            if st.button("Approve all", disabled=not (pending and reviewer)):
                try:
                    res = ENGINE.approve(pending, reviewer)
                    load_range.clear()
                    st.toast(f"Approved {len(res.beams)} beam and {len(res.geo_checks)} geometry record(s).", icon="✅")
                    st.rerun()
                except MpcQaError as e:
                    st.error(f"Approval failed: {e}")
            if not reviewer:
                st.caption("Enter a reviewer name in the sidebar to approve.")

        with st.container(border=True):
            st.markdown("**Report**")
            choices = [g.name for g in groups]
            chosen = st.multiselect("Checks to include", choices, default=choices)
            c1, c2 = st.columns(2)
            rep_start = c1.date_input("From", value=selected_date, key="rep_start")
            rep_end = c2.date_input("To", value=selected_date, key="rep_end")
            if st.button("Generate Report"):
                try:
                    with st.spinner("Generating PDF…"):
                        st.session_state["report_pdf"] = ENGINE.request_report(machine_id, rep_start, rep_end, chosen)
                except MpcQaError as e:
                    st.error(f"Report generation failed: {e}")
            if st.session_state.get("report_pdf"):
                st.download_button(
                    "Download PDF",
                    data=st.session_state["report_pdf"],
                    file_name=f"mpc_report_{machine_id}_{rep_start}_{rep_end}.pdf",
                    mime="application/pdf",
                )

# =============================================================================
# TAB 2: TRENDS
# =============================================================================
with tab_trends:
    st.markdown('<div class="section-title">Trends</div>', unsafe_allow_html=True)
    end = selected_date
    start = end - dt.timedelta(days=int(st.session_state["graph_days"]) - 1)
    st.markdown(f'<div class="section-sub">{start:%d %b} – {end:%d %b %Y}</div>', unsafe_allow_html=True)

    try:
        beams, geo = load_range(machine_id, start, end)
        options = available_metrics(beams, geo)
    except MpcQaError as e:
        st.error(f"Error loading data: {e}")
        options = []

    keep = [m for m in st.session_state["selected_metrics"] if m in options]
    selected = st.multiselect("Metrics", options, default=keep)
    st.session_state["selected_metrics"] = selected
    st.session_state["show_deltas"] = st.checkbox(
        "Plot as change from baseline", value=st.session_state["show_deltas"]
    )

    settings = SETTINGS.load()
    try:
        view = ENGINE.graph_for(machine_id, start, end, selected, deltas=st.session_state["show_deltas"])
    except MpcQaError as e:
        st.error(f"Error building chart: {e}")
        view = None

    if view is not None:
        message, tone = baseline_summary(settings.baseline, len(selected), view.baseline)
        _banner(message, tone)
        if view.effective_threshold is not None:
            st.caption(f"Shading uses the tightest tolerance among the selection: ± {view.effective_threshold:.2f}")

        fig = plot_metric_trend(
            view.series,
            selected,
            view.domain,
            threshold=view.effective_threshold,
            baselines=None if view.deltas else view.baseline.values_by_key,
            title="Change from baseline" if view.deltas else "Metric trend",
            edge_percent=(settings.graph_threshold_top_percent, settings.graph_threshold_bottom_percent),
            edge_color=settings.graph_threshold_color,
        )
        st.pyplot(fig, clear_figure=True, use_container_width=True)

        if selected:
            table = series_frame(view.series, selected)
            with st.expander("Data"):
                st.dataframe(table, use_container_width=True, hide_index=True)
            st.download_button(
                "Download CSV",
                data=table.to_csv(index=False).encode("utf-8"),
                file_name=f"mpc_trend_{machine_id}_{start}_{end}.csv",
                mime="text/csv",
            )

# =============================================================================
# TAB 3: SETTINGS
# =============================================================================
def _threshold_table(resolver: ThresholdResolver, variants) -> pd.DataFrame:
    rows = []
    for v in variants:
        row: Dict[str, object] = {"Variant": v.variant}
        for metric in BEAM_METRICS:
            row[BEAM_METRICS[metric]] = resolver.resolve(machine_id, "beam", metric, v.id, v.variant)
        rows.append(row)
    return pd.DataFrame(rows)


def _render_batch(result, what: str) -> None:
    if result.ok:
        st.success(result.summary())
    else:
        st.warning(result.summary())
        for item, msg in result.failed:
            st.caption(f"{what} {getattr(item, 'metric_type', item)}: {msg}")


with tab_settings:
    t_thr, t_doc, t_base, t_look = st.tabs(["Thresholds", "DOC Factors", "Baseline", "Appearance"])

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------
    with t_thr:
        try:
            service = ThresholdService(CLIENT)
            service.refresh()
            variants = load_variants()
        except MpcQaError as e:
            st.error(f"Error loading thresholds: {e}")
            service, variants = None, []

        if service is not None:
            resolver = service.resolver()
            st.markdown("**Beam thresholds**")
            if variants:
                st.dataframe(_threshold_table(resolver, variants), use_container_width=True, hide_index=True)
                with st.form("beam_thresholds"):
                    names_v = [v.variant for v in variants]
                    vname = st.selectbox("Beam variant", names_v)
                    variant = variants[names_v.index(vname)]
                    cols = st.columns(len(BEAM_METRICS))
                    values: Dict[str, float] = {}
                    for col, (metric, label) in zip(cols, BEAM_METRICS.items()):
                        current_val = resolver.resolve(machine_id, "beam", metric, variant.id, variant.variant)
                        values[metric] = col.number_input(label, min_value=0.0, value=float(current_val or 0.0), step=0.1)
                    apply_all = st.checkbox("Apply to all beam variants")
                    if st.form_submit_button("Save beam thresholds"):
                        targets = variants if apply_all else [variant]
                        _render_batch(service.apply_to_all_variants(machine_id, values, targets), "Threshold")
            else:
                st.caption("No beam variants returned by the service.")

            st.markdown("**Geometry thresholds**")
            st.session_state["geo_easy_mode"] = st.toggle(
                "Easy mode (one tolerance for every geometry metric)", value=st.session_state["geo_easy_mode"]
            )
            with st.form("geo_thresholds"):
                if st.session_state["geo_easy_mode"]:
                    one = st.number_input("Tolerance", min_value=0.0, value=1.0, step=0.1)
                    payload = one
                else:
                    payload = {}
                    cols = st.columns(3)
                    for i, (metric, label) in enumerate(GEO_METRICS.items()):
                        cur = resolver.resolve(machine_id, "geometry", metric)
                        payload[metric] = cols[i % 3].number_input(label, min_value=0.0, value=float(cur or 0.0), step=0.1)
                c1, c2 = st.columns(2)
                leaf = c1.number_input(
                    "MLC leaf position (mm)", min_value=0.0,
                    value=float(resolver.resolve(machine_id, "geometry", MLC_LEAF_METRIC) or 0.0), step=0.1,
                )
                backlash = c2.number_input(
                    "MLC backlash (mm)", min_value=0.0,
                    value=float(resolver.resolve(machine_id, "geometry", MLC_BACKLASH_METRIC) or 0.0), step=0.1,
                )
                if st.form_submit_button("Save geometry thresholds"):
                    try:
                        _render_batch(service.apply_to_all_geometry(machine_id, payload), "Threshold")
                        for metric, val in ((MLC_LEAF_METRIC, leaf), (MLC_BACKLASH_METRIC, backlash)):
                            service.save(Threshold(machine_id=machine_id, check_type="geometry", metric_type=metric, value=val))
                    except MpcQaError as e:
                        st.error(f"Saving thresholds failed: {e}")

    # -------------------------------------------------------------------------
    # DOC factors
    # -------------------------------------------------------------------------
    with t_doc:
        docs = DocFactorService(CLIENT)
        try:
            factors = docs.list(machine_id)
            variants = load_variants()
        except MpcQaError as e:
            st.error(f"Error loading DOC factors: {e}")
            factors, variants = [], []

        if factors:
            df_f = pd.DataFrame([
                {
                    "Variant": f.beam_variant_name or f.beam_variant_id,
                    "MSD Abs": f.msd_abs,
                    "MPC Rel (%)": f.mpc_rel,
                    "DOC factor": f.doc_factor,
                    "Start": f.start_date,
                    "End": f.end_date,
                    "id": f.id,
                }
                for f in sorted(factors, key=lambda f: (f.beam_variant_name or "", f.start_date))
            ])
            st.dataframe(df_f.drop(columns=["id"]), use_container_width=True, hide_index=True)
            with st.form("doc_delete"):
                labels = {f.id: f"{f.beam_variant_name or f.beam_variant_id} from {f.start_date}" for f in factors if f.id}
                target = st.selectbox("Delete factor", list(labels), format_func=lambda i: labels[i]) if labels else None
                if st.form_submit_button("Delete", disabled=not labels):
                    try:
                        docs.delete(target)
                        st.toast("DOC factor deleted.", icon="🗑️")
                        st.rerun()
                    except MpcQaError as e:
                        st.error(f"Delete failed: {e}")
        else:
            st.caption("No DOC factors for this machine.")

        st.markdown("**New factors** (one row per variant; leave MSD Abs empty to skip)")
        measured_on = st.date_input("Measurement date", value=selected_date, key="doc_measured")
        try:
            day_checks = CLIENT.list_beam_checks(machine_id, measured_on, measured_on)
        except MpcQaError as e:
            st.error(f"Could not load beam checks: {e}")
            day_checks = []
        with st.form("doc_create"):
            start_date = st.date_input("Effective from", value=measured_on, key="doc_start")
            allow_overlap = st.checkbox("Allow overlapping intervals")
            entries: List[dict] = []
            for v in variants:
                check = docs.measurement_for(machine_id, v.id, measured_on, variant_name=v.variant, checks=day_checks)
                c1, c2, c3 = st.columns([1.0, 1.0, 1.0])
                c1.markdown(f"**{v.variant}**")
                msd = c2.text_input("MSD Abs", key=f"msd_{v.id}", placeholder="0.97 – 1.03")
                if check is None:
                    c3.caption("MPC Rel: no beam check on this date")
                else:
                    c3.caption(f"MPC Rel: {check.relative_output:.3f}% (check {check.id})")
                entries.append({
                    "beam_variant_id": v.id,
                    "beam_variant_name": v.variant,
                    "beam_id": check.id if check is not None else None,
                    "msd_abs": msd.strip() or None,
                    "measurement_date": measured_on,
                    "start_date": start_date,
                })
            if st.form_submit_button("Create factors"):
                result = docs.create_batch(machine_id, entries, reject_overlap=not allow_overlap)
                if result.created:
                    st.success(f"Created {len(result.created)} DOC factor(s).")
                for variant, reason in result.skipped:
                    if reason != "no MSD Abs":
                        st.warning(f"{variant}: {reason}")
                for variant, reason in result.failed:
                    st.error(f"{variant}: {reason}")

    # -------------------------------------------------------------------------
    # Baseline
    # -------------------------------------------------------------------------
    with t_base:
        s = SETTINGS.load()
        with st.form("baseline"):
            mode = st.radio(
                "Baseline mode", ["date", "manual"], index=0 if s.baseline.mode == "date" else 1, horizontal=True,
                format_func=lambda m: "Specific date" if m == "date" else "Manual values",
            )
            base_date = st.date_input(
                "Baseline date",
                value=dt.date.fromisoformat(s.baseline.date) if s.baseline.date else None,
            )
            mv = s.baseline.manual_values
            c1, c2, c3 = st.columns(3)
            oc = c1.number_input("Output Change (%)", value=float(mv.output_change), step=0.1)
            uc = c2.number_input("Uniformity Change (%)", value=float(mv.uniformity_change), step=0.1)
            cs = c3.number_input("Center Shift (mm)", value=float(mv.center_shift), step=0.01)
            if st.form_submit_button("Save baseline"):
                try:
                    SETTINGS.update_baseline(
                        mode=mode,
                        date=base_date.isoformat() if base_date else None,
                        manual_values={"outputChange": oc, "uniformityChange": uc, "centerShift": cs},
                    )
                    st.toast("Baseline saved.", icon="💾")
                except ValidationError as e:
                    st.error(str(e))

    # -------------------------------------------------------------------------
    # Appearance
    # -------------------------------------------------------------------------
    with t_look:
        s = SETTINGS.load()
        with st.form("appearance"):
            theme = st.radio("Theme", ["light", "dark"], index=0 if s.theme == "light" else 1, horizontal=True)
            accent = st.color_picker("Accent color", value=s.accent_color)
            c1, c2, c3 = st.columns(3)
            top = c1.number_input("Graph threshold top (%)", value=float(s.graph_threshold_top_percent), step=0.5)
            bottom = c2.number_input("Graph threshold bottom (%)", value=float(s.graph_threshold_bottom_percent), step=0.5)
            shade = c3.color_picker("Warning shade", value=s.graph_threshold_color)
            if st.form_submit_button("Save appearance"):
                try:
                    SETTINGS.update_theme(theme)
                    SETTINGS.update_accent_color(accent)
                    SETTINGS.update_graph_thresholds(top, bottom, shade)
                    st.rerun()
                except ValidationError as e:
                    st.error(str(e))
