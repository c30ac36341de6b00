from __future__ import annotations

import os
import pathlib


class Paths:
    @property
    def root(self) -> pathlib.Path:
        """Return the pipeline configuration directory.

        Raises:
            RuntimeError: If PEGASUS_ROOT is not set in the environment

        """
        if "PEGASUS_ROOT" not in os.environ:
            msg = "PEGASUS_ROOT environment variable not set."
            raise RuntimeError(msg)

        return pathlib.Path(os.environ["PEGASUS_ROOT"])

    @property
    def settings(self) -> pathlib.Path:
        return self.root / "pegasus.yaml"
