"""
Dependency graph of a remediation plan, built with NetworkX and exported
to interactive HTML with pyvis.

Edges point from a dependency to the step that depends on it, so root
nodes (no incoming edges) are the steps that can run first.

Root nodes are coloured GREEN.
Leaf nodes (nothing depends on them) are coloured BLUE.
Steps that already ran are coloured by their status.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import networkx as nx
from pyvis.network import Network

from rule2plan.models import FAILURE, RUNNING, SUCCESS, RemediationPlan

log = logging.getLogger(__name__)

# ── Colour constants ──────────────────────────────────────────────────────────
ROOT_COLOUR = "#4CAF50"     # green  – no dependencies
LEAF_COLOUR = "#4FC3F7"     # light blue – nothing depends on it
STATUS_COLOURS = {
    SUCCESS: "#81C784",
    FAILURE: "#E53935",
    RUNNING: "#FFB74D",
}
DEFAULT_COLOUR = "#B0BEC5"  # grey fallback
OUTPUT_EDGE_COLOUR = "#FFD600"  # yellow – edges that carry an output reference

PYVIS_OPTIONS = """
{
  "layout": {
    "hierarchical": {
      "enabled": true,
      "direction": "UD",
      "sortMethod": "directed",
      "levelSeparation": 150,
      "nodeSpacing": 250
    }
  },
  "physics": {
    "hierarchicalRepulsion": { "nodeDistance": 250 }
  },
  "edges": {
    "arrows": { "to": { "enabled": true } },
    "font": { "size": 10, "align": "middle" },
    "smooth": { "type": "cubicBezier" }
  },
  "nodes": {
    "font": { "size": 12, "face": "arial" },
    "borderWidth": 2
  },
  "interaction": {
    "hover": true,
    "tooltipDelay": 100
  }
}
"""


def build_plan_graph(plan: RemediationPlan) -> nx.DiGraph:
    """Create a directed graph with one node per step and dependency -> dependent edges."""
    G = nx.DiGraph()

    for step in plan.steps:
        G.add_node(
            step.id,
            action=step.action_name,
            reason=step.reason,
            status=step.status,
            error=step.error or "",
        )

    for step in plan.steps:
        referenced = {ref.partition(".")[0]: ref for ref in step.output_refs.values()}
        for dep in step.depends_on:
            G.add_edge(dep, step.id, output_ref=referenced.get(dep, ""))

    return G


def node_colour(G: nx.DiGraph, node_id: str) -> str:
    """Priority: status (once executed) > root > leaf."""
    status = G.nodes[node_id].get("status")
    if status in STATUS_COLOURS:
        return STATUS_COLOURS[status]
    if G.in_degree(node_id) == 0:
        return ROOT_COLOUR
    if G.out_degree(node_id) == 0:
        return LEAF_COLOUR
    return DEFAULT_COLOUR


def node_title(G: nx.DiGraph, node_id: str) -> str:
    attrs = G.nodes[node_id]
    title = (
        f"<b>{node_id}</b><br>"
        f"<b>Action:</b> {attrs.get('action', 'N/A')}<br>"
        f"<b>Reason:</b> {attrs.get('reason', '')}<br>"
        f"<b>Status:</b> {attrs.get('status', '')}<br>"
    )
    if attrs.get("error"):
        title += f"<b>Error:</b> {attrs['error']}<br>"
    return title


def execution_layers(G: nx.DiGraph) -> list[list[str]]:
    """Group steps into layers whose members only depend on earlier layers."""
    return [sorted(layer) for layer in nx.topological_generations(G)]


def critical_path(G: nx.DiGraph) -> list[str]:
    """Longest dependency chain in the plan."""
    if G.number_of_nodes() == 0:
        return []
    return nx.dag_longest_path(G)


# ── Summary printing ──────────────────────────────────────────────────────────

def print_plan_summary(G: nx.DiGraph) -> None:
    roots = sorted(n for n in G.nodes if G.in_degree(n) == 0)
    leaves = sorted(n for n in G.nodes if G.out_degree(n) == 0)

    print("=" * 70)
    print("PLAN GRAPH SUMMARY")
    print(f"  Steps        : {G.number_of_nodes()}")
    print(f"  Dependencies : {G.number_of_edges()}")
    print()
    print(f"  Root steps (no dependencies): {len(roots)}")
    for r in roots:
        print(f"    {r} – {G.nodes[r].get('action', '')}")
    print()
    print(f"  Leaf steps (nothing depends on them): {len(leaves)}")
    for lf in leaves:
        print(f"    {lf} – {G.nodes[lf].get('action', '')}")

    if nx.is_directed_acyclic_graph(G):
        print()
        print("  Execution layers:")
        for i, layer in enumerate(execution_layers(G), 1):
            print(f"    {i}: {', '.join(layer)}")
        path = critical_path(G)
        if path:
            print()
            print(f"  Critical path ({len(path)} steps): {'  →  '.join(path)}")
    print("=" * 70)


# ── pyvis export ──────────────────────────────────────────────────────────────

def export_plan_graph(G: nx.DiGraph, output_path: Union[str, Path]) -> None:
    """Export the plan graph to an interactive HTML file."""
    net = Network(
        height="100%", width="100%",
        directed=True, notebook=False, cdn_resources="remote",
    )
    net.set_options(PYVIS_OPTIONS)

    for nid in G.nodes:
        is_root = G.in_degree(nid) == 0
        net.add_node(
            nid,
            label=f"{nid}\n{G.nodes[nid].get('action', '')}",
            title=node_title(G, nid),
            color=node_colour(G, nid),
            shape="diamond" if is_root else "box",
            size=30 if is_root else 20,
        )

    for src, dst, attrs in G.edges(data=True):
        ref = attrs.get("output_ref", "")
        net.add_edge(
            src,
            dst,
            label=ref,
            title=ref,
            color=OUTPUT_EDGE_COLOUR if ref else "#888888",
            width=3.5 if ref else 1.5,
        )

    net.save_graph(str(output_path))
    log.info("Wrote plan graph to %s", output_path)
    print(f"Plan graph  → {output_path}")
