import json
import time
import pandas as pd
import streamlit as st

from tokenecon.config import ScenarioConfig
from tokenecon.engine import SimulationEngine
from tokenecon.errors import LedgerError

st.set_page_config(page_title="Token Economy Simulator", layout="wide")


def get_engine() -> SimulationEngine:
    if "engine" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.seed = 1
        st.session_state.engine = SimulationEngine(cfg=cfg, seed=st.session_state.seed)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
    else:
        cfg = st.session_state.get("cfg", ScenarioConfig())
    seed = int(st.session_state.get("seed", 1))
    st.session_state.engine = SimulationEngine(cfg=cfg, seed=seed)


engine = get_engine()

st.title("Token Economy Simulator")
st.caption("Time model: 1 tick = 1 day. Amounts are shown in whole tokens.")


def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"


def _fmt(value: float) -> str:
    return f"{float(value):,.2f}"


def _whole(value: int) -> float:
    return float(value) / engine.cfg.token_unit


def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)


def _format_event_meta(meta) -> str:
    if not meta:
        return ""
    return json.dumps(meta, sort_keys=True, default=str)


with st.sidebar:
    st.header("Sim Controls")

    st.subheader("Run")
    if st.button("Restart simulation"):
        reset_engine(reset_config=True)
        engine = st.session_state.engine
        st.session_state.run_progress = 0.0
        st.session_state.run_progress_label = "Idle"
    st.caption("Restart resets the simulation to tick 0 with default settings.")
    if "seed" not in st.session_state:
        st.session_state.seed = 1
    st.number_input("Random seed", min_value=1, max_value=100000, key="seed")

    run_ticks = st.slider("Ticks to run", min_value=1, max_value=365, value=30)
    c1, c2 = st.columns(2)
    run_one = c1.button("Step 1 tick")
    run_many = c2.button("Run N ticks")
    progress_label = st.session_state.get("run_progress_label", "Idle")
    progress_value = float(st.session_state.get("run_progress", 0.0))
    progress_bar = st.progress(progress_value, text=progress_label)
    if run_one or run_many:
        total = 1 if run_one else int(run_ticks)
        start_ts = time.time()
        for idx in range(total):
            engine.step(1)
            progress = (idx + 1) / total
            progress_bar.progress(progress, text=f"Run progress: {progress:.0%}")
        elapsed = time.time() - start_ts
        st.session_state.run_progress = 1.0
        st.session_state.run_progress_label = f"Run progress: 100% ({_fmt_duration(elapsed)})"
        progress_bar.progress(1.0, text=st.session_state.run_progress_label)
    st.caption(f"Current tick: {engine.tick}")

    st.subheader("Behaviour")
    engine.cfg.p_act = st.slider("Activity (p_act)", 0.0, 1.0, float(engine.cfg.p_act), step=0.05)
    engine.cfg.slippage_bps = int(st.number_input(
        "Slippage tolerance (bps)", min_value=0, max_value=5000,
        value=int(engine.cfg.slippage_bps), step=10,
    ))
    engine.cfg.p_repay = st.slider("Borrower repay probability", 0.0, 1.0, float(engine.cfg.p_repay), step=0.05)

    st.subheader("Growth")
    roles = ["trader", "liquidity_provider", "staker", "farmer", "borrower", "lender"]
    role = st.selectbox("Agent role", roles)
    if st.button("Add agent"):
        engine.add_agent(role)

    st.subheader("Admin")
    rate = st.number_input(
        "Staking APY (bps)", min_value=0, max_value=10_000,
        value=int(engine.economy.staking.annual_rate_bps), step=50,
        help="Values above the staking ceiling are rejected by the engine.",
    )
    if st.button("Set staking rate"):
        try:
            engine.economy.staking.set_annual_rate("treasury", int(rate))
        except LedgerError as exc:
            st.warning(str(exc))
        else:
            st.success(f"Staking rate set to {int(rate)} bps")

tab_network, tab_pools, tab_farm, tab_loans, tab_events = st.tabs(
    ["Network Overview", "Pools", "Farm", "Loans", "Events"]
)

# Data
net_df = engine.metrics.network_df()
pool_df = engine.metrics.pool_df()
farm_df = engine.metrics.farm_df()

with tab_network:
    st.subheader("Network KPIs")
    if net_df.empty:
        st.info("No metrics yet. Run ticks.")
    else:
        latest = net_df.iloc[-1].to_dict()
        kpis = [
            ("Agents", _fmt(latest.get("agents", 0))),
            ("Pools", _fmt(latest.get("pools", 0))),
            ("Total staked", _fmt(_whole(latest.get("total_staked", 0)))),
            ("Staking APY (bps)", _fmt(latest.get("staking_rate_bps", 0))),
            ("Reward supply", _fmt(_whole(latest.get("reward_supply", 0)))),
            ("Actions ok", _fmt(latest.get("actions_ok", 0))),
            ("Actions failed", _fmt(latest.get("actions_failed", 0))),
            ("Events", _fmt(latest.get("events", 0))),
        ]
        _render_kpi_grid(kpis, columns=4)

        st.subheader("Reward supply")
        st.line_chart(net_df, x="tick", y=["reward_supply"])

        st.subheader("Actions (cumulative)")
        st.line_chart(net_df, x="tick", y=["actions_ok", "actions_failed"])

        if engine.failures:
            st.subheader("Failure reasons")
            fail_df = pd.DataFrame(
                [{"reason": k, "count": v} for k, v in engine.failures.most_common()]
            )
            st.dataframe(fail_df, use_container_width=True)

with tab_pools:
    st.subheader("Pools (latest tick)")
    if pool_df.empty:
        st.info("No pool rows yet.")
    else:
        latest_tick = pool_df["tick"].max()
        cur = pool_df[pool_df["tick"] == latest_tick].sort_values("pair")
        st.dataframe(cur, use_container_width=True)

        st.subheader("Price (token1 per token0)")
        st.line_chart(engine.metrics.pool_pivot("price"))

        st.subheader("sqrt(k)")
        st.caption("Never decreases under swaps; moves with liquidity adds and removals.")
        st.line_chart(engine.metrics.pool_pivot("sqrt_k"))

        pairs = list(cur["pair"])
        sel = st.selectbox("Select pool", pairs)
        row = cur[cur["pair"] == sel].iloc[0]
        c1, c2, c3 = st.columns(3)
        c1.metric("Reserve 0", _fmt(_whole(row["reserve0"])))
        c2.metric("Reserve 1", _fmt(_whole(row["reserve1"])))
        c3.metric("LP supply", _fmt(row["lp_supply"]))

with tab_farm:
    st.subheader("Farm pools")
    if farm_df.empty:
        st.info("No farm pools yet.")
    else:
        latest_tick = farm_df["tick"].max()
        st.dataframe(farm_df[farm_df["tick"] == latest_tick], use_container_width=True)
        staked = farm_df.pivot_table(index="tick", columns="staked_token", values="total_staked", aggfunc="last")
        st.subheader("Staked per farm pool")
        st.line_chart(staked)

with tab_loans:
    st.subheader("Loans")
    loans = engine.economy.loans
    if loans.loan_count == 0:
        st.info("No loans yet.")
    else:
        counts = engine.loan_counts()
        _render_kpi_grid([(k.title(), _fmt(v)) for k, v in counts.items()], columns=4)
        if not net_df.empty:
            st.line_chart(net_df, x="tick", y=[f"loans_{k}" for k in counts])
        st.dataframe(pd.DataFrame([loan.to_dict() for loan in loans.loans]), use_container_width=True)

with tab_events:
    st.subheader("Event Log (latest 300)")
    tail = engine.log.tail(300)
    if not tail:
        st.info("No events yet.")
    else:
        df = pd.DataFrame([e.__dict__ for e in tail])
        df = df.iloc[::-1]
        if "meta" in df.columns:
            df["meta"] = df["meta"].apply(_format_event_meta)
        st.dataframe(df, use_container_width=True)
