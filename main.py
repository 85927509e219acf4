import argparse
import logging
import sys
import uuid
from typing import Optional

from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import CaseState

# Import Nodes
from nodes.intake import intake_node
from nodes.classifier import classifier_node
from nodes.paywall import paywall_node

# Load Env
load_dotenv()

logger = logging.getLogger(__name__)


def build_graph():
    """
    Constructs the LangGraph state machine.
    """
    builder = StateGraph(CaseState)

    # 1. Add Nodes
    builder.add_node("intake", intake_node)
    builder.add_node("classifier", classifier_node)
    builder.add_node("paywall", paywall_node)

    # 2. Add Edges (The Flow)
    builder.add_edge(START, "intake")

    # Conditional logic: Did the input pass validation?
    def check_intake(state):
        if state.get("validation_errors"):
            return END
        return "classifier"

    builder.add_conditional_edges("intake", check_intake)

    builder.add_edge("classifier", "paywall")
    builder.add_edge("paywall", END)

    # 3. Compile
    return builder.compile()


_GRAPH = None


def get_graph():
    global _GRAPH
    if _GRAPH is None:
        _GRAPH = build_graph()
    return _GRAPH


def run_case(
    email_text: str,
    stance: str = "dispute",
    confirmed_truthful: bool = False,
    client_id: Optional[str] = None,
    is_paid: bool = False,
    letter_id: Optional[str] = None,
) -> CaseState:
    """Run one submission through intake, drafting and the paywall."""
    initial_state: CaseState = {
        "letter_id": letter_id or uuid.uuid4().hex,
        "status": "Received",
        "email_text": email_text,
        "stance": stance,
        "confirmed_truthful": confirmed_truthful,
        "client_id": client_id,
        "validation_errors": [],
        "draft": None,
        "draft_method": None,
        "warnings": [],
        "is_paid": is_paid,
        "paywall": None,
    }
    return get_graph().invoke(initial_state)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Draft a deposit dispute letter from a landlord's email.",
    )
    parser.add_argument("email_file", help="Text file containing the landlord's email ('-' for stdin)")
    parser.add_argument("--admit", action="store_true", help="Accept some fault; dispute the amount only")
    parser.add_argument("--confirmed", action="store_true", help="Confirm the details are true")
    parser.add_argument("--paid", action="store_true", help="Render as if the letter was paid for")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    if args.email_file == "-":
        email_text = sys.stdin.read()
    else:
        with open(args.email_file, "r", encoding="utf-8") as f:
            email_text = f.read()

    final_state = run_case(
        email_text,
        stance="admit" if args.admit else "dispute",
        confirmed_truthful=args.confirmed,
        is_paid=args.paid,
    )

    errors = final_state.get("validation_errors") or []
    if errors:
        print(f"Rejected: {errors[0]['message']}", file=sys.stderr)
        return 2

    draft = final_state["draft"]
    view = final_state["paywall"]
    print(f"Strength: {draft['strength']}")
    print(f"Act cited: {draft['act_cited']}")
    print(f"Summary: {draft['summary']}")
    for warning in final_state.get("warnings") or []:
        print(f"Warning: {warning}", file=sys.stderr)
    print()
    print(view["visible_text"])
    if view["advice"]:
        print()
        print(view["advice_intro"])
        for tip in view["advice"]:
            print(f"  - {tip}")
    if view["obscured_text"]:
        print()
        print(view["obscured_text"])
        print()
        print("[Payment required to unlock the full letter]")
    return 0


if __name__ == "__main__":
    print("Starting Deposit Defender...")
    sys.exit(main())
