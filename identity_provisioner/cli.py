import argparse
import asyncio
import json
import sys
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config.settings import Settings, get_settings
from .models.provisioning import ProvisioningResult
from .utils.telemetry import setup_logging, setup_telemetry
from .workflows.provisioning import build_failure_result, describe_validation_error, provision_user


console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-provisioner",
        description="Create an Entra ID user, add it to groups, assign a license and notify the service desk.",
    )
    parser.add_argument("--display-name", required=True, help="Display name, e.g. 'Jane Doe'")
    parser.add_argument("--upn", required=True, dest="user_principal_name", help="User principal name")
    parser.add_argument("--mail-nickname", required=True, help="Mail alias")
    parser.add_argument("--department", help="Department")
    parser.add_argument("--job-title", help="Job title")
    parser.add_argument(
        "--group",
        action="append",
        dest="group_ids",
        default=[],
        metavar="GROUP_ID",
        help="Group object ID; repeat for several groups (assigned in order)",
    )
    parser.add_argument("--license", dest="license_sku_id", metavar="SKU_ID", help="License SKU ID")
    parser.add_argument(
        "--notify",
        action="store_true",
        dest="send_notification",
        help="Send a welcome notification to the configured address",
    )
    parser.add_argument("--json", action="store_true", dest="as_json", help="Print the result as JSON")
    parser.add_argument(
        "--show-password",
        action="store_true",
        help="Include the temporary password in the output",
    )
    parser.add_argument("--trace", action="store_true", help="Export OpenTelemetry spans to the console")
    return parser


def render_result(result: ProvisioningResult, show_password: bool = False) -> None:
    output = result.to_output(reveal_credential=show_password)

    if result.success:
        body = "\n".join([
            f"[green]User ID:[/green] {output['userId']}",
            f"[green]UPN:[/green] {output['upn']}",
            f"[green]Display Name:[/green] {output['displayName']}",
            f"[green]Temporary Password:[/green] {output['password']}",
            f"\n{output['message']}",
        ])
        console.print(Panel(body, title="Provisioning Succeeded", style="bold green"))
    else:
        body = "\n".join([
            f"[red]UPN:[/red] {output['upn']}",
            f"[red]Error:[/red] {output['error']}",
            f"\n{output['message']}",
        ])
        console.print(Panel(body, title="Provisioning Failed", style="bold red"))

    if result.warnings:
        table = Table(title="Warnings", show_header=True, header_style="bold magenta")
        table.add_column("Type", style="cyan")
        table.add_column("Target", style="yellow")
        table.add_column("Detail")
        for warning in result.warnings:
            table.add_row(warning.kind.value, warning.target or "-", warning.message)
        console.print(table)


async def run(args: argparse.Namespace, settings: Settings) -> ProvisioningResult:
    return await provision_user(
        display_name=args.display_name,
        user_principal_name=args.user_principal_name,
        mail_nickname=args.mail_nickname,
        department=args.department,
        job_title=args.job_title,
        group_ids=args.group_ids,
        license_sku_id=args.license_sku_id,
        send_notification=args.send_notification,
        settings=settings,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        setup_logging()
        result = build_failure_result(
            args.user_principal_name,
            args.display_name,
            f"ConfigurationError: {describe_validation_error(exc)}",
        )
    else:
        setup_logging(settings.log_level)
        if args.trace:
            setup_telemetry()
        result = asyncio.run(run(args, settings))

    if args.as_json:
        print(json.dumps(result.to_output(reveal_credential=args.show_password), indent=2))
    else:
        render_result(result, show_password=args.show_password)

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
