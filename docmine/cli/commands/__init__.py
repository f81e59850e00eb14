"""Click command groups registered on the ``docmine`` entrypoint."""

from docmine.cli.commands.cache import cache_group
from docmine.cli.commands.config import config_group
from docmine.cli.commands.runs import runs_group
from docmine.cli.commands.watermark import watermark_group

__all__ = ["cache_group", "config_group", "runs_group", "watermark_group"]
