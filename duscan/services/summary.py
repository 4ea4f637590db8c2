from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from duscan.models.enums import NodeKind
from duscan.models.scan import ScanNode, ScanSnapshot, ScanStats
from duscan.services.formatting import format_bytes, relative_path
from duscan.services.tree import top_nodes


def _trim(path: str, root_prefix: str) -> str:
    return escape(relative_path(path, root_prefix))


def _stats_panel(root: ScanNode, stats: ScanStats) -> Panel:
    body = (
        f"Path: [bold]{escape(root.path)}[/bold]\n"
        f"Files: [bold]{stats.files:,}[/bold]\n"
        f"Directories: [bold]{stats.directories:,}[/bold]\n"
        f"Total Size: [bold]{format_bytes(root.size_bytes)}[/bold]\n"
        f"Sparse Files: [bold]{stats.sparse_files}[/bold]\n"
        f"Access Errors: [bold]{stats.access_errors}[/bold]"
    )
    return Panel(body, title="Scan Summary", border_style="blue")


def _top_nodes_table(title: str, root: ScanNode, top_n: int, kind: NodeKind) -> Table:
    root_prefix = root.path.rstrip("/") + "/"
    table = Table(title=title, header_style="bold yellow")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("Share", justify="right")
    for node in top_nodes(root, top_n, kind):
        share = node.size_bytes * 100 / root.size_bytes if root.size_bytes else 0.0
        table.add_row(_trim(node.path, root_prefix), format_bytes(node.size_bytes), f"{share:.1f}%")
    return table


def render_summary(console: Console, snapshot: ScanSnapshot, top_n: int) -> None:
    root = snapshot.root
    console.print(_stats_panel(root, snapshot.stats))
    console.print(_top_nodes_table("Largest Directories", root, top_n, NodeKind.DIRECTORY))
    console.print(_top_nodes_table("Largest Files", root, top_n, NodeKind.FILE))
