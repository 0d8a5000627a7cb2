import os
from pathlib import Path


def _strip_quotes(val: str) -> str:
	if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
		return val[1:-1]
	return val


def _load_dotenv_if_needed(path: str = ".env") -> None:
	# Tests configure Settings explicitly; never pick up a developer's .env there
	if os.getenv("PYTEST_CURRENT_TEST"):
		return
	env_path = Path(path)
	if not env_path.is_file():
		return
	try:
		lines = env_path.read_text(encoding="utf-8").splitlines()
	except OSError:
		return
	for raw in lines:
		line = raw.strip()
		if line.startswith("export "):
			line = line[len("export "):].lstrip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, val = line.split("=", 1)
		key = key.strip()
		if key and key not in os.environ:
			os.environ[key] = _strip_quotes(val.strip())


_load_dotenv_if_needed()
