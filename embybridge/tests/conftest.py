import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_emby_env():
    """Keep Emby credentials and tuning variables from leaking across tests.
    A local .env may set these; clear them before each test and restore afterwards.
    """
    keys = [
        'EMBY_URL', 'EMBY_USERNAME', 'EMBY_PASSWORD',
        'EMBYBRIDGE_IMPORT_CONCURRENCY', 'EMBYBRIDGE_MATCH_LIMIT',
        'EMBYBRIDGE_DURATION_TOLERANCE', 'EMBYBRIDGE_NCM_BATCH_SIZE',
        'EMBYBRIDGE_LOG_LEVEL', 'EMBYBRIDGE_LOG_FILE',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
