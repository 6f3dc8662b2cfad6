"""Back-office console for settlement operators."""

import logging
import shlex
import sys
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from telemed_settlement.auth import Principal, Role
from telemed_settlement.config import LOG_LEVEL, OPERATOR_ID
from telemed_settlement.ledger.database.connection import init_database
from telemed_settlement.operations import BookingOperations, OperationResult

console = Console()

HELP_TEXT = "[bold]Commands[/bold]\n" + escape("""  settings                                         Show platform settings
  appointment <appointment_id>                     Show an appointment and its history
  earnings <doctor_id> [start] [end]               Doctor earnings (dates as YYYY-MM-DD)
  platform [start] [end]                           Platform revenue report
  withdrawals <doctor_id>                          Withdrawal history
  pending-withdrawals                              Pending withdrawals across all doctors
  refund-queue                                     Canceled appointments awaiting refund
  refund <appointment_id> <amount>                 Refund a canceled appointment
  approve <withdrawal_id> <amount> <txn_id> [mode] Approve a withdrawal (mode defaults to Bank Transfer)
  bulk-approve <txn_id> <mode> <withdrawal_id...>  Approve several withdrawals at their requested amounts
  reject-withdrawal <withdrawal_id> <reason...>    Reject a withdrawal
  help                                             Show this help
  quit                                             Exit""")


def _money(value) -> str:
    return f"{value:,.2f}" if value is not None else "-"


def _error(result: OperationResult) -> str:
    return f"[bold red]{result.error_kind}:[/bold red] {escape(result.message or '')}"


def _key_value_table(title: str, rows: list[tuple[str, object]]) -> Table:
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    for key, value in rows:
        table.add_row(key, "-" if value is None else str(value))
    return table


def _parse_date(text: str) -> datetime:
    return datetime.fromisoformat(text)


def show_settings(ops: BookingOperations, principal: Principal, args: list[str]):
    result = ops.get_platform_settings(principal)
    if not result.ok:
        return _error(result)
    s = result.value
    return _key_value_table("Platform settings", [
        ("Patient commission %", s.patient_commission),
        ("Doctor commission %", s.doctor_commission),
        ("Cancellation fee", _money(s.cancellation_fee)),
        ("Gateway fee %", s.gateway_fee_pct),
        ("GST on gateway fee %", s.gst_on_gateway_fee_pct),
        ("Minimum withdrawal", _money(s.minimum_withdrawal)),
        ("Updated", s.updated_at),
    ])


def show_appointment(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) != 1:
        return "Usage: appointment <appointment_id>"
    result = ops.get_appointment(principal, args[0])
    if not result.ok:
        return _error(result)
    a = result.value
    table = _key_value_table(f"Appointment {a.id}", [
        ("Patient", f"{a.patient_name} ({a.patient_id})"),
        ("Doctor", a.doctor_id),
        ("Scheduled", a.rescheduled_at or a.scheduled_at),
        ("Status", a.status),
        ("Booking", a.booking_status),
        ("Payment", a.payment_status),
        ("Consultation fee", _money(a.consultation_fee)),
        ("Total fee", _money(a.total_fee)),
        ("Rates (patient/doctor)", f"{a.patient_commission_rate}% / {a.doctor_commission_rate}%"),
        ("Payment id", a.payment.payment_id),
        ("Refund", a.refund_status),
        ("Refund amount", _money(a.refund.amount) if a.refund else None),
        ("Cancellation reason", a.cancellation_reason),
    ])

    history = ops.get_appointment_history(principal, a.id)
    if not history.ok or not history.value:
        return table
    events = Table(title="History")
    events.add_column("When")
    events.add_column("Event", style="bold")
    events.add_column("From")
    events.add_column("To")
    events.add_column("Actor")
    for event in history.value:
        events.add_row(
            event["created_at"], event["event"], event["from_status"] or "-",
            event["to_status"] or "-", event["actor_id"],
        )
    return [table, events]


def show_earnings(ops: BookingOperations, principal: Principal, args: list[str]):
    if not 1 <= len(args) <= 3:
        return escape("Usage: earnings <doctor_id> [start] [end]")
    try:
        start = _parse_date(args[1]) if len(args) > 1 else None
        end = _parse_date(args[2]) if len(args) > 2 else None
    except ValueError:
        return "Dates must be YYYY-MM-DD"
    result = ops.compute_doctor_earnings(principal, {"doctor_id": args[0], "start": start, "end": end})
    if not result.ok:
        return _error(result)
    e = result.value
    return _key_value_table(f"Earnings for {e.doctor_id}", [
        ("Completed appointments", e.completed_appointments),
        ("Gross", _money(e.gross)),
        ("Commission", _money(e.commission)),
        ("Net", _money(e.net)),
        ("Withdrawn", _money(e.withdrawn)),
        ("Pending payout", _money(e.pending_payout)),
    ])


def show_platform(ops: BookingOperations, principal: Principal, args: list[str]):
    try:
        start = _parse_date(args[0]) if len(args) > 0 else None
        end = _parse_date(args[1]) if len(args) > 1 else None
    except ValueError:
        return "Dates must be YYYY-MM-DD"
    result = ops.compute_platform_revenue(principal, start, end)
    if not result.ok:
        return _error(result)
    r = result.value
    return _key_value_table("Platform revenue", [
        ("Completed appointments", r.completed_appointments),
        ("Collected", _money(r.collected)),
        ("Patient commission", _money(r.patient_commission)),
        ("Doctor commission", _money(r.doctor_commission)),
        ("Platform revenue", _money(r.platform_revenue)),
        ("Refunded appointments", r.refunded_appointments),
        ("Refunded amount", _money(r.refunded_amount)),
        ("Gateway fees", _money(r.gateway_fees)),
        ("GST on gateway fees", _money(r.gst_on_gateway_fees)),
        ("Refund residuals", _money(r.refund_residuals)),
        ("Net profit", _money(r.net_profit)),
    ])


def show_withdrawals(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) != 1:
        return "Usage: withdrawals <doctor_id>"
    result = ops.list_withdrawals(principal, args[0])
    if not result.ok:
        return _error(result)
    if not result.value:
        return f"No withdrawals for {args[0]}."
    table = Table(title=f"Withdrawals for {args[0]}")
    table.add_column("Reference", style="bold")
    table.add_column("ID")
    table.add_column("Requested")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Paid", justify="right")
    table.add_column("Transaction")
    for w in result.value:
        table.add_row(
            w.reference or "-", w.id, w.requested_at or "-", _money(w.amount), w.status,
            _money(w.approved_amount), w.transaction_id or "-",
        )
    return table


def show_pending_withdrawals(ops: BookingOperations, principal: Principal, args: list[str]):
    result = ops.list_pending_withdrawals(principal)
    if not result.ok:
        return _error(result)
    if not result.value:
        return "No pending withdrawals."
    table = Table(title="Pending withdrawals")
    table.add_column("Reference", style="bold")
    table.add_column("ID")
    table.add_column("Doctor")
    table.add_column("Requested")
    table.add_column("Amount", justify="right")
    table.add_column("Method")
    for w in result.value:
        table.add_row(w.reference or "-", w.id, w.doctor_id, w.requested_at or "-", _money(w.amount), w.method)
    return table


def show_refund_queue(ops: BookingOperations, principal: Principal, args: list[str]):
    result = ops.list_pending_refunds(principal)
    if not result.ok:
        return _error(result)
    if not result.value:
        return "No refunds pending."
    table = Table(title="Refunds pending")
    table.add_column("Appointment", style="bold")
    table.add_column("Patient")
    table.add_column("Doctor")
    table.add_column("Canceled")
    table.add_column("Total fee", justify="right")
    table.add_column("Payment id")
    for a in result.value:
        table.add_row(
            a.id, f"{a.patient_name} ({a.patient_id})", a.doctor_id, a.canceled_at or "-",
            _money(a.total_fee), a.payment.payment_id or "-",
        )
    return table


def do_refund(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) != 2:
        return "Usage: refund <appointment_id> <amount>"
    result = ops.process_refund(principal, {"appointment_id": args[0], "refund_amount": args[1]})
    if not result.ok:
        return _error(result)
    refund = result.value.refund
    quote = result.value.quote
    return _key_value_table(f"Refund {refund.refund_id}", [
        ("Mode", result.value.mode),
        ("Amount", _money(refund.amount)),
        ("Cancellation fee", _money(quote.cancellation_fee)),
        ("Gateway fee", _money(quote.gateway_fee)),
        ("GST on gateway fee", _money(quote.gst_on_gateway_fee)),
        ("Residual", _money(quote.residual_after_refund)),
    ])


def do_approve(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) < 3:
        return escape("Usage: approve <withdrawal_id> <amount> <txn_id> [mode]")
    result = ops.approve_withdrawal(principal, {
        "withdrawal_id": args[0],
        "approved_amount": args[1],
        "transaction_id": args[2],
        "payment_mode": " ".join(args[3:]) or "Bank Transfer",
        "payment_date": datetime.now(),
    })
    if not result.ok:
        return _error(result)
    w = result.value
    return f"[green]Approved {w.reference}:[/green] {_money(w.approved_amount)} (invoice {w.invoice_url})"


def do_bulk_approve(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) < 3:
        return escape("Usage: bulk-approve <txn_id> <mode> <withdrawal_id...>")
    result = ops.bulk_approve_withdrawals(principal, {
        "transaction_id": args[0],
        "payment_mode": args[1],
        "withdrawal_ids": args[2:],
        "payment_date": datetime.now(),
    })
    if not result.ok:
        return _error(result)
    lines = [f"[green]Approved {len(result.value.approved)}:[/green]"]
    lines += [f"  {w.reference} {_money(w.approved_amount)}" for w in result.value.approved]
    if result.value.failed:
        lines.append(f"[bold red]Failed {len(result.value.failed)}:[/bold red]")
        lines += [f"  {escape(wid)} {kind}" for wid, kind in result.value.failed.items()]
    return "\n".join(lines)


def do_reject_withdrawal(ops: BookingOperations, principal: Principal, args: list[str]):
    if len(args) < 2:
        return "Usage: reject-withdrawal <withdrawal_id> <reason...>"
    result = ops.reject_withdrawal(principal, {"withdrawal_id": args[0], "reason": " ".join(args[1:])})
    if not result.ok:
        return _error(result)
    return f"[yellow]Rejected {result.value.reference}[/yellow]"


COMMANDS = {
    "settings": show_settings,
    "appointment": show_appointment,
    "earnings": show_earnings,
    "platform": show_platform,
    "withdrawals": show_withdrawals,
    "pending-withdrawals": show_pending_withdrawals,
    "refund-queue": show_refund_queue,
    "refund": do_refund,
    "approve": do_approve,
    "bulk-approve": do_bulk_approve,
    "reject-withdrawal": do_reject_withdrawal,
}


def process_command(ops: BookingOperations, principal: Principal, line: str):
    """Run one console command and return something rich can print."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        return f"[bold red]Parse error:[/bold red] {escape(str(e))}"
    if not parts:
        return None

    command, args = parts[0].lower(), parts[1:]
    if command == "help":
        return HELP_TEXT
    handler = COMMANDS.get(command)
    if handler is None:
        return f"Unknown command '{escape(command)}'. Type 'help' for a list of commands."
    return handler(ops, principal, args)


def main():
    """Operator console loop."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    init_database()

    ops = BookingOperations()
    principal = Principal(OPERATOR_ID, Role.ADMIN)

    console.print("[bold blue]Telemed settlement console[/bold blue]")
    console.print("Type 'help' for commands, 'quit' to exit.\n")

    is_tty = sys.stdin.isatty()

    while True:
        try:
            line = console.input("[bold green]settle>[/bold green] ").strip()
            # Echo input when stdin is piped (not interactive)
            if not is_tty and line:
                console.print(f"[dim]{line}[/dim]")
        except (EOFError, KeyboardInterrupt):
            console.print("\n[bold blue]Goodbye![/bold blue]")
            break

        if not line:
            continue

        if line.lower() in ("quit", "exit"):
            console.print("[bold blue]Goodbye![/bold blue]")
            break

        try:
            output = process_command(ops, principal, line)
        except Exception as e:
            console.print(f"[bold red]Error:[/bold red] {e}\n")
            continue

        for renderable in output if isinstance(output, list) else [output]:
            if renderable is not None:
                console.print(renderable)
        console.print()


if __name__ == "__main__":
    main()
