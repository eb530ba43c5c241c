"""Main CLI entry point for the leadauto command."""

import functools
import json
import logging
import uuid
from pathlib import Path
from typing import Optional, Tuple, Dict, Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..core.config import ConfigManager
from ..core.models import ActionType, Channel, Lead, LeadPriority, LeadStage, parse_datetime
from ..errors import LeadAutomationError
from ..follow_up.templates import TemplateStore
from ..orchestrator import LeadEvent, Orchestrator
from ..routing.conditions import Condition, ConditionOperator
from ..routing.router import AssignmentDirective, DirectiveType, Rep
from ..routing.rules_engine import AssignmentRule, RuleStatus, RulesEngine
from ..storage.database import AutomationDatabase

console = Console()

PRIORITY_STYLES = {
    "urgent": "bold red",
    "high": "yellow",
    "medium": "cyan",
    "low": "dim",
}


def get_db(ctx: click.Context) -> AutomationDatabase:
    """Get database instance."""
    path = ctx.obj.get("db_path")
    return AutomationDatabase(Path(path) if path else None)


def get_config_manager() -> ConfigManager:
    return ConfigManager()


def get_orchestrator(ctx: click.Context) -> Orchestrator:
    """Orchestrator wired to the CLI database, config and templates."""
    db = get_db(ctx)
    config = get_config_manager().config
    templates = TemplateStore.from_file(Path(config.templates_path) if config.templates_path else None)
    return Orchestrator.from_database(
        db,
        ctx.obj["tenant"],
        config=config,
        templates=templates,
    )


def handle_errors(func):
    """Print engine errors in red and exit non-zero."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LeadAutomationError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise click.exceptions.Exit(1)

    return wrapper


def parse_pairs(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse ``key=value`` options; JSON scalars are decoded."""
    result: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected key=value, got '{pair}'")
        key, raw = pair.split("=", 1)
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        result[key.strip()] = value
    return result


def parse_condition(text: str) -> Condition:
    """Parse ``field:operator:value``."""
    parts = text.split(":", 2)
    if len(parts) != 3:
        raise click.BadParameter(f"Expected field:operator:value, got '{text}'")
    field, operator, value = parts
    return Condition(field=field.strip(), operator=operator.strip(), value=value.strip())


def action_table(actions, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Action", style="cyan")
    table.add_column("When")
    table.add_column("Priority")
    table.add_column("Target")
    table.add_column("Template / Subject")
    table.add_column("Status")

    for action in actions:
        style = PRIORITY_STYLES.get(action.priority.value, "")
        status = action.status.value + (" (task)" if action.degraded else "")
        table.add_row(
            action.action_type.value,
            action.scheduled_time.strftime("%Y-%m-%d %H:%M %Z"),
            f"[{style}]{action.priority.value}[/{style}]",
            action.target or "-",
            action.subject or action.template_id or action.reason,
            status,
        )
    return table


@click.group()
@click.version_option(version=__version__, prog_name="leadauto")
@click.option("--db", "db_path", envvar="LEAD_AUTOMATION_DB", help="Custom database path")
@click.option("--tenant", "-t", default="default", envvar="LEAD_AUTOMATION_TENANT",
              help="Tenant (organization) id")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[str], tenant: str, verbose: bool):
    """Lead Automation - route dealership leads and schedule follow-ups.

    \b
    Quick Start:
      leadauto init                                        # Create database
      leadauto rep add sarah --name "Sarah Johnson" --capacity 25
      leadauto lead add 1001 --attr first_name=Ana --attr email=ana@example.com
      leadauto route 1001                                  # Assign + schedule
      leadauto suggest 1001                                # Preview only
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path
    ctx.obj["tenant"] = tenant


# ============================================================================
# CORE COMMANDS
# ============================================================================

@cli.command()
@click.pass_context
def init(ctx: click.Context):
    """Initialize the database and configuration."""
    db = get_db(ctx)
    manager = get_config_manager()
    if not manager.config_path.exists():
        manager.save_config()

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Database: [cyan]{db.db_path}[/cyan]\n"
        f"Config:   [cyan]{manager.config_path}[/cyan]\n"
        f"Time zone: [cyan]{manager.config.timezone}[/cyan]\n\n"
        f"[bold]Next steps:[/bold]\n"
        f"1. [yellow]leadauto rep add <id> --name ...[/yellow]\n"
        f"2. [yellow]leadauto rule add --name ... --condition budget:greater_than:50000 --assign user --to <id>[/yellow]\n"
        f"3. [yellow]leadauto lead add <id> --attr ...[/yellow]\n"
        f"4. [yellow]leadauto route <id>[/yellow]",
        title="Lead Automation"
    ))


@cli.command()
@click.argument("lead_id")
@click.option("--event", type=click.Choice([e.value for e in LeadEvent]), default="created",
              help="What happened to the lead")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
@handle_errors
def route(ctx: click.Context, lead_id: str, event: str, as_json: bool):
    """Assign a lead and schedule its follow-ups."""
    orchestrator = get_orchestrator(ctx)
    result = orchestrator.route_and_schedule(lead_id, event=LeadEvent(event))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    rep = result.assignee
    console.print(
        f"[green]✓ Lead {lead_id} assigned to [bold]{rep.name or rep.id}[/bold][/green] "
        f"via {result.directive}"
        + (f" (rule {result.rule_id})" if result.rule_id else " (default)")
        + f"  load {rep.current_load}/{rep.max_capacity}"
    )
    console.print(action_table(result.actions, "Scheduled Follow-ups"))


@cli.command()
@click.argument("lead_id")
@click.option("--json", "as_json", is_flag=True, help="Print the actions as JSON")
@click.pass_context
@handle_errors
def suggest(ctx: click.Context, lead_id: str, as_json: bool):
    """Preview follow-ups for a lead without committing anything."""
    orchestrator = get_orchestrator(ctx)
    actions = orchestrator.suggested_actions(lead_id)

    if as_json:
        click.echo(json.dumps([a.to_dict() for a in actions], indent=2, default=str))
        return

    console.print(action_table(actions, f"Suggested Follow-ups for Lead {lead_id}"))
    if actions:
        console.print(f"[dim]Next recommended action: {actions[0].action_type.value}[/dim]")


@cli.command("follow-up")
@click.argument("lead_id")
@click.option("--type", "action_type", type=click.Choice([a.value for a in ActionType]),
              required=True, help="Action type")
@click.option("--at", "scheduled", help="ISO date/time (default: now)")
@click.option("--template", "template_id", help="Message template id")
@click.option("--message", "custom_message", help="Custom message body")
@click.option("--priority", type=click.Choice([p.value for p in LeadPriority]), help="Priority")
@click.option("--assign-to", "assigned_to", help="Rep id")
@click.pass_context
@handle_errors
def follow_up(ctx: click.Context, lead_id: str, action_type: str, scheduled: Optional[str],
              template_id: Optional[str], custom_message: Optional[str],
              priority: Optional[str], assigned_to: Optional[str]):
    """Schedule a single follow-up by hand."""
    scheduled_time = None
    if scheduled:
        scheduled_time = parse_datetime(scheduled)
        if scheduled_time is None:
            raise click.BadParameter(f"Not an ISO date/time: {scheduled}")

    orchestrator = get_orchestrator(ctx)
    action = orchestrator.create_follow_up(
        lead_id,
        ActionType(action_type),
        scheduled_time=scheduled_time,
        template_id=template_id,
        custom_message=custom_message,
        priority=LeadPriority(priority) if priority else None,
        assigned_to=assigned_to,
    )
    console.print(action_table([action], "Follow-up Created"))


# ============================================================================
# LEADS
# ============================================================================

@cli.group()
def lead():
    """Manage lead snapshots."""
    pass


@lead.command("add")
@click.argument("lead_id")
@click.option("--stage", type=click.Choice([s.value for s in LeadStage]), default="inquiry")
@click.option("--priority", type=click.Choice([p.value for p in LeadPriority]), default="medium")
@click.option("--attr", "attrs", multiple=True, help="Attribute as key=value (repeatable)")
@click.pass_context
def lead_add(ctx: click.Context, lead_id: str, stage: str, priority: str, attrs: Tuple[str, ...]):
    """Add or update a lead."""
    db = get_db(ctx)
    existing = db.get_lead(ctx.obj["tenant"], lead_id)
    record = existing or Lead(id=lead_id, tenant_id=ctx.obj["tenant"])
    record.stage = LeadStage(stage)
    record.priority = LeadPriority(priority)
    record.attributes.update(parse_pairs(attrs))
    db.save_lead(record)
    verb = "Updated" if existing else "Added"
    console.print(f"[green]✓ {verb} lead {lead_id}[/green] ({stage}, {priority})")


@lead.command("show")
@click.argument("lead_id")
@click.pass_context
def lead_show(ctx: click.Context, lead_id: str):
    """Show a lead with its follow-ups and fallback tasks."""
    db = get_db(ctx)
    tenant = ctx.obj["tenant"]
    record = db.get_lead(tenant, lead_id)
    if not record:
        console.print(f"[red]Lead {lead_id} not found[/red]")
        return

    attributes = "\n".join(f"{k}: {v}" for k, v in sorted(record.attributes.items()))
    console.print(Panel(
        f"[bold]Stage:[/bold] {record.stage.value}\n"
        f"[bold]Priority:[/bold] {record.priority.value}\n"
        f"[bold]Assignee:[/bold] {record.assignee or '-'}\n"
        f"[bold]Follow-ups:[/bold] {record.follow_up_count}"
        f" (last {record.last_follow_up.isoformat() if record.last_follow_up else 'never'})\n\n"
        f"{attributes}",
        title=f"Lead {record.id}: {record.display_name}"
    ))

    actions = db.list_for_lead(tenant, lead_id)
    if actions:
        console.print(action_table(actions, "Follow-ups"))

    tasks = db.list_tasks(tenant, lead_id)
    if tasks:
        table = Table(title="Fallback Tasks")
        table.add_column("Title")
        table.add_column("Due")
        table.add_column("Priority")
        for task in tasks:
            table.add_row(task["title"], task["due_date"], task["priority"])
        console.print(table)


# ============================================================================
# REPS AND TEAMS
# ============================================================================

@cli.group()
def rep():
    """Manage sales reps."""
    pass


@rep.command("add")
@click.argument("rep_id")
@click.option("--name", default="", help="Display name")
@click.option("--email", default="", help="Email")
@click.option("--phone", default="", help="Phone")
@click.option("--capacity", default=20, type=int, help="Advisory max lead load")
@click.option("--team", "teams", multiple=True, help="Team id (repeatable)")
@click.option("--inactive", is_flag=True, help="Add as inactive")
@click.pass_context
def rep_add(ctx: click.Context, rep_id: str, name: str, email: str, phone: str,
            capacity: int, teams: Tuple[str, ...], inactive: bool):
    """Add or update a rep."""
    db = get_db(ctx)
    db.save_rep(ctx.obj["tenant"], Rep(
        id=rep_id,
        name=name,
        email=email,
        phone=phone,
        active=not inactive,
        max_capacity=capacity,
        team_ids=list(teams),
    ))
    console.print(f"[green]✓ Saved rep {rep_id}[/green]")


@rep.command("status")
@click.argument("rep_id")
@click.argument("state", type=click.Choice(["active", "inactive"]))
@click.pass_context
def rep_status(ctx: click.Context, rep_id: str, state: str):
    """Activate or deactivate a rep."""
    db = get_db(ctx)
    if db.set_rep_active(ctx.obj["tenant"], rep_id, state == "active"):
        console.print(f"[green]✓ Rep {rep_id} is now {state}[/green]")
    else:
        console.print(f"[red]Rep {rep_id} not found[/red]")


@rep.command("list")
@click.pass_context
def rep_list(ctx: click.Context):
    """List reps with their current load."""
    roster = get_db(ctx).load_roster(ctx.obj["tenant"])

    table = Table(title="Sales Reps")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("Load", justify="right")
    table.add_column("Teams")

    for member in roster.reps.values():
        pct = member.load_percentage
        color = "red" if pct >= 90 else "yellow" if pct >= 70 else "green"
        table.add_row(
            member.id,
            member.name or "-",
            "✓" if member.active else "[dim]✗[/dim]",
            f"[{color}]{member.current_load}/{member.max_capacity} ({pct}%)[/{color}]",
            ", ".join(member.team_ids) or "-",
        )
    console.print(table)


@cli.command("team")
@click.argument("team_id")
@click.argument("rep_ids", nargs=-1, required=True)
@click.pass_context
def team(ctx: click.Context, team_id: str, rep_ids: Tuple[str, ...]):
    """Set the members of a team."""
    get_db(ctx).save_team(ctx.obj["tenant"], team_id, list(rep_ids))
    console.print(f"[green]✓ Team {team_id}: {', '.join(rep_ids)}[/green]")


# ============================================================================
# RULES
# ============================================================================

@cli.group()
def rule():
    """Manage assignment rules."""
    pass


@rule.command("add")
@click.option("--id", "rule_id", help="Rule id (generated if omitted)")
@click.option("--name", required=True, help="Rule name")
@click.option("--description", default="", help="Description")
@click.option("--priority", default=10, type=int, help="Lower runs first")
@click.option("--condition", "conditions", multiple=True,
              help="field:operator:value (repeatable, all must match)")
@click.option("--assign", "assign_type", type=click.Choice([d.value for d in DirectiveType]),
              required=True, help="Assignment type")
@click.option("--to", "candidates", default="", help="Comma-separated rep ids")
@click.option("--team", "team_id", help="Team id for --assign team")
@click.option("--inactive", is_flag=True, help="Create disabled")
@click.pass_context
def rule_add(ctx: click.Context, rule_id: Optional[str], name: str, description: str,
             priority: int, conditions: Tuple[str, ...], assign_type: str, candidates: str,
             team_id: Optional[str], inactive: bool):
    """Add or update an assignment rule."""
    parsed = [parse_condition(c) for c in conditions]
    known = {op.value for op in ConditionOperator}
    for condition in parsed:
        if condition.operator not in known:
            console.print(f"[yellow]Operator '{condition.operator}' is unknown and will never match[/yellow]")

    saved = get_db(ctx).save_rule(ctx.obj["tenant"], AssignmentRule(
        id=rule_id or str(uuid.uuid4())[:8],
        name=name,
        description=description,
        priority=priority,
        status=RuleStatus.INACTIVE if inactive else RuleStatus.ACTIVE,
        conditions=parsed,
        directive=AssignmentDirective.from_dict({
            "type": assign_type,
            "candidates": candidates,
            "team_id": team_id,
        }),
    ))
    console.print(f"[green]✓ Saved rule {saved.id}[/green] (priority {saved.priority}, #{saved.sequence})")


@rule.command("list")
@click.pass_context
def rule_list(ctx: click.Context):
    """List rules in evaluation order."""
    rules = get_db(ctx).list_rules(ctx.obj["tenant"])

    table = Table(title="Assignment Rules")
    table.add_column("Pri", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Conditions")
    table.add_column("Assign")
    table.add_column("Status")
    table.add_column("Leads", justify="right")

    for item in rules:
        status = "[green]active[/green]" if item.is_active else "[dim]inactive[/dim]"
        table.add_row(
            str(item.priority),
            item.id,
            item.name,
            "\n".join(str(c) for c in item.conditions) or "[dim]always[/dim]",
            item.directive.describe(),
            status,
            str(item.leads_assigned),
        )
    console.print(table)


@rule.command("enable")
@click.argument("rule_id")
@click.pass_context
def rule_enable(ctx: click.Context, rule_id: str):
    """Activate a rule."""
    if get_db(ctx).set_rule_status(ctx.obj["tenant"], rule_id, RuleStatus.ACTIVE):
        console.print(f"[green]✓ Rule {rule_id} enabled[/green]")
    else:
        console.print(f"[red]Rule {rule_id} not found[/red]")


@rule.command("disable")
@click.argument("rule_id")
@click.pass_context
def rule_disable(ctx: click.Context, rule_id: str):
    """Deactivate a rule."""
    if get_db(ctx).set_rule_status(ctx.obj["tenant"], rule_id, RuleStatus.INACTIVE):
        console.print(f"[yellow]Rule {rule_id} disabled[/yellow]")
    else:
        console.print(f"[red]Rule {rule_id} not found[/red]")


@rule.command("test")
@click.argument("lead_id")
@click.pass_context
def rule_test(ctx: click.Context, lead_id: str):
    """Show how each rule evaluates against a lead."""
    db = get_db(ctx)
    tenant = ctx.obj["tenant"]
    record = db.get_lead(tenant, lead_id)
    if not record:
        console.print(f"[red]Lead {lead_id} not found[/red]")
        return

    engine = RulesEngine(timezone=get_config_manager().config.timezone)
    reports = engine.explain(record, db.list_rules(tenant))
    for report in reports:
        marker = "[bold green]→[/bold green]" if report.selected else " "
        state = "" if report.rule.is_active else " [dim](inactive)[/dim]"
        console.print(f"{marker} [{report.rule.priority}] {report.rule.name}{state}")
        for check in report.conditions:
            icon = "[green]✓[/green]" if check.matched else "[red]✗[/red]"
            console.print(f"    {icon} {check.condition}")

    if not any(r.selected for r in reports):
        console.print("[dim]No rule matches; the default directive applies[/dim]")


# ============================================================================
# TEMPLATES AND CONFIG
# ============================================================================

@cli.group()
def templates():
    """Inspect message templates."""
    pass


@templates.command("list")
def templates_list():
    """List templates and their placeholders."""
    config = get_config_manager().config
    store = TemplateStore.from_file(Path(config.templates_path) if config.templates_path else None)

    table = Table(title="Message Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Email placeholders")
    table.add_column("SMS placeholders")
    for template_id in store.template_ids():
        table.add_row(
            template_id,
            ", ".join(store.placeholders(template_id, Channel.EMAIL)),
            ", ".join(store.placeholders(template_id, Channel.SMS)),
        )
    console.print(table)


@templates.command("render")
@click.argument("template_id")
@click.option("--channel", type=click.Choice([c.value for c in Channel]), default="email")
@click.option("--var", "variables", multiple=True, help="Variable as key=value (repeatable)")
@handle_errors
def templates_render(template_id: str, channel: str, variables: Tuple[str, ...]):
    """Render a template with the given variables."""
    config = get_config_manager().config
    store = TemplateStore.from_file(Path(config.templates_path) if config.templates_path else None)
    values = {**config.template_defaults, **parse_pairs(variables)}
    rendered = store.render_message(template_id, Channel(channel), values)

    console.print(Panel(rendered.body, title=rendered.subject or template_id))
    if rendered.missing:
        console.print(f"[yellow]Missing variables: {', '.join(rendered.missing)}[/yellow]")


@cli.group("config")
def config_group():
    """Show or change engine settings."""
    pass


@config_group.command("show")
def config_show():
    """Print the current configuration."""
    manager = get_config_manager()
    console.print(f"[dim]{manager.config_path}[/dim]")
    console.print_json(json.dumps(manager.config.to_dict(), default=str))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set timezone, default_directive (JSON), templates_path or a dealership_* value."""
    manager = get_config_manager()
    try:
        manager.set_value(key, value)
    except KeyError:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise click.exceptions.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid value for {key}: {e}[/red]")
        raise click.exceptions.Exit(1)
    console.print(f"[green]✓ {key} updated[/green]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
