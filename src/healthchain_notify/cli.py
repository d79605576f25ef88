"""
Command-line interface for HealthChain Notify.
"""

import argparse
import asyncio
import logging
import sys
from rich.console import Console
from rich.table import Table

from .core.config import AppConfig
from .core.application import NotificationApplication
from .core.models import Channel

console = Console()
logger = logging.getLogger(__name__)


def setup_logging():
    """Setup basic logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_variables(pairs):
    """Turn `key=value` arguments into a variables map."""
    variables = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got '{pair}'")
        variables[key] = value
    return variables


async def run_application_with_config(config_path=None):
    """Run the API server and delivery worker with specified config."""
    console.print("[bold green]Starting HealthChain Notify[/bold green]")

    config = AppConfig.from_yaml(config_path)

    if config.http_server.enabled:
        console.print(f"[bold blue]Notification API:[/bold blue] http://{config.http_server.host}:{config.http_server.port}")
        console.print(f"[dim]Realtime events: ws://{config.http_server.host}:{config.http_server.port}/notifications/ws[/dim]")
        console.print()

    app = NotificationApplication(config)

    try:
        await app.run()
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutdown requested by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Application error: {e}[/red]")
        logger.exception("Unhandled exception")
        raise


async def _with_application(config_path, action):
    config = AppConfig.from_yaml(config_path)
    app = NotificationApplication(config)
    await app.initialize(configure_logging=False)
    try:
        return await action(app)
    finally:
        await app.shutdown()


async def init_db_with_config(config_path=None):
    """Create the database schema."""
    async def action(app):
        stats = await app.database_manager.get_database_stats()
        console.print(f"[green]✓ Database ready at {app.config.database_url}[/green]")
        for table, count in stats.items():
            console.print(f"  {table}: {count} rows")

    await _with_application(config_path, action)


async def load_templates_with_config(config_path=None, templates_file=None):
    """Seed templates from a YAML file."""
    async def action(app):
        templates = await app.load_templates(templates_file)
        table = Table(title=f"Loaded {len(templates)} templates")
        table.add_column("Key")
        table.add_column("Channel")
        table.add_column("Body")
        for template in templates:
            table.add_row(template.key, template.channel.value, template.body)
        console.print(table)

    await _with_application(config_path, action)


async def send_with_config(config_path=None, recipient_id=None, channels=None,
                           template_key=None, variables=None):
    """Queue a notification and deliver it in the foreground."""
    async def action(app):
        notifications = await app.manager.send({
            "recipient_id": recipient_id,
            "channels": channels,
            "template_key": template_key,
            "variables": variables or {},
        })
        console.print(f"[green]✓ Queued {len(notifications)} notification(s)[/green]")

        await app.worker.drain()

        for notification in notifications:
            current = await app.records.get(notification.id)
            colour = "green" if current.status.value == "SENT" else "yellow"
            console.print(
                f"  {current.channel.value}: [{colour}]{current.status.value}[/{colour}] "
                f"{current.id} - {current.rendered_body}"
            )
            for job in await app.queue.jobs_for_notification(notification.id):
                if job["last_error"]:
                    console.print(f"    attempt {job['attempt']} ({job['state']}): {job['last_error']}")

    await _with_application(config_path, action)


async def queue_stats_with_config(config_path=None):
    """Show dispatch queue statistics."""
    async def action(app):
        stats = await app.queue.get_queue_stats()
        table = Table(title="Dispatch queue")
        table.add_column("State")
        table.add_column("Jobs", justify="right")
        for state, count in stats.items():
            table.add_row(state, str(count))
        console.print(table)

    await _with_application(config_path, action)


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="HealthChain Notify notification service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --config config/default.yaml              Run the API and delivery worker
  %(prog)s init-db                                       Create the database schema
  %(prog)s load-templates config/templates.yaml          Seed templates
  %(prog)s send --recipient u1 --channel EMAIL --template welcome --var name=Alice
  %(prog)s queue-stats                                   Show queue statistics
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def add_config_argument(subparser):
        subparser.add_argument('--config', '-c',
                               help='Configuration file path (default: config/default.yaml)',
                               default='config/default.yaml')

    run_parser = subparsers.add_parser('run', help='Run the API server and delivery worker')
    add_config_argument(run_parser)

    init_db_parser = subparsers.add_parser('init-db', help='Create the database schema')
    add_config_argument(init_db_parser)

    load_parser = subparsers.add_parser('load-templates', help='Load templates from a YAML file')
    add_config_argument(load_parser)
    load_parser.add_argument('templates_file', help='YAML file with a top-level templates list')

    send_parser = subparsers.add_parser('send', help='Send a notification and deliver it immediately')
    add_config_argument(send_parser)
    send_parser.add_argument('--recipient', required=True, help='Recipient ID')
    send_parser.add_argument('--channel', action='append', required=True,
                             choices=[channel.value for channel in Channel],
                             help='Delivery channel (repeatable)')
    send_parser.add_argument('--template', required=True, help='Template key')
    send_parser.add_argument('--var', action='append', default=[], metavar='KEY=VALUE',
                             help='Template variable (repeatable)')

    stats_parser = subparsers.add_parser('queue-stats', help='Show dispatch queue statistics')
    add_config_argument(stats_parser)

    return parser


def main():
    """Main entry point."""
    setup_logging()

    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'run':
            asyncio.run(run_application_with_config(args.config))
        elif args.command == 'init-db':
            asyncio.run(init_db_with_config(args.config))
        elif args.command == 'load-templates':
            asyncio.run(load_templates_with_config(args.config, args.templates_file))
        elif args.command == 'send':
            try:
                variables = parse_variables(args.var)
            except argparse.ArgumentTypeError as e:
                parser.error(str(e))
            asyncio.run(send_with_config(
                args.config, args.recipient, args.channel, args.template, variables
            ))
        elif args.command == 'queue-stats':
            asyncio.run(queue_stats_with_config(args.config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("Unhandled exception")
        sys.exit(1)


if __name__ == "__main__":
    main()
