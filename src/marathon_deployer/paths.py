"""Default file names and path helpers for Marathon Deployer.

Definition files are looked up relative to the workspace (the checkout the
job runner builds in):
- marathon.json                            # application definition
- marathon-rendered-${BUILD_NUMBER}.json   # what was actually submitted
- marathon-rendered-${BUILD_NUMBER}-N.json # same, for entry N of a batch
"""

from pathlib import Path
from typing import Union

DEFAULT_DEFINITION_FILE = "marathon.json"
DEFAULT_RENDERED_FILE = "marathon-rendered-${BUILD_NUMBER}.json"
# batch entries each get their own rendered file
BATCH_RENDERED_FILE = "marathon-rendered-${BUILD_NUMBER}-{index}.json"

BASE_DIR = Path(".marathon-deployer")
DEFAULT_CONFIG_PATH = Path("config/deploy_config.json")
DEFAULT_CREDENTIALS_PATH = BASE_DIR / "credentials.json"


def resolve_in_workspace(workspace: Union[str, Path], filename: str) -> Path:
    """Return `filename` as an absolute path or relative to `workspace`."""
    path = Path(filename).expanduser()
    if path.is_absolute():
        return path
    return Path(workspace) / path


def batch_rendered_file(index: int) -> str:
    """Default rendered file name for the `index`-th (1-based) batch entry."""
    return BATCH_RENDERED_FILE.replace("{index}", str(index))
