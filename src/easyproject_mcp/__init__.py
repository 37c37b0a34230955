"""EasyProject MCP: JSON-RPC tool bridge to the EasyProject (Redmine) REST API."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("easyproject-mcp")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from easyproject_mcp.client import EasyProjectClient
from easyproject_mcp.config import AppConfig, load_config

__all__ = ["AppConfig", "EasyProjectClient", "__version__", "load_config"]
