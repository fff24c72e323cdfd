import logging
import os


class DotEnvParser:
    """
    A parser for the legacy per-directory ``.env`` settings file.

    Each meaningful line is ``KEY=VALUE``; values may be wrapped in single or
    double quotes and an ``export`` prefix is accepted, so the same file can be
    sourced by a shell.
    """

    # Mapping of recognised keys to their field names in the TOML schema
    KEY_MAP = {
        "BBM_RUN_FILE": "run_file",
        "BBM_TPL_FILE": "tpl_file",
        "BBM_SCR_DIR": "scr_dir",
        "BBM_INT_FILE": "int_file",
    }

    def __init__(self, filepath):
        """
        Initialize the parser with the path to the settings file.

        :param filepath: Path to the ``.env`` file.
        """
        self.filepath = filepath
        self.parameters = {}
        self._parse_file()

    def _parse_file(self):
        """
        Parse the settings file and populate the parameters dictionary.
        """
        if not os.path.isfile(self.filepath):
            raise FileNotFoundError(f"Settings file '{self.filepath}' not found.")

        with open(self.filepath, "r", encoding="utf-8", errors="replace") as file:
            for line_num, line in enumerate(file, start=1):
                stripped_line = line.strip()

                # Skip empty lines and full-line comments
                if not stripped_line or stripped_line.startswith("#"):
                    continue

                if stripped_line.startswith("export "):
                    stripped_line = stripped_line[len("export "):].lstrip()

                if "=" not in stripped_line:
                    logging.warning(
                        f"Line {line_num} in '{self.filepath}' is not a KEY=VALUE pair and will be ignored."
                    )
                    continue

                key, value = stripped_line.split("=", 1)
                self._assign_parameter(key.strip(), self._unquote(value.strip()), line_num)

    @staticmethod
    def _unquote(value):
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            return value[1:-1]
        # Remove inline comments from unquoted values
        if " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        return value

    def _assign_parameter(self, key, value, line_num):
        """
        Store a recognised key under its schema name.

        :param key: The variable name.
        :param value: The unquoted value.
        :param line_num: Line number (for diagnostics).
        """
        field_name = self.KEY_MAP.get(key.upper())
        if field_name is None:
            logging.info(f"Ignoring unknown setting '{key}' on line {line_num} of '{self.filepath}'.")
            return
        logging.info(f"found env var from {self.filepath}: {key}={value}")
        self.parameters[field_name] = value or None

    def as_payload(self):
        """
        Return the parsed settings shaped like the ``[blackbox]`` TOML table.
        """
        return {"blackbox": dict(self.parameters)} if self.parameters else {}

    def __repr__(self):
        return f"DotEnvParser({self.parameters})"
