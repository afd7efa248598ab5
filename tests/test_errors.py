from pathlib import Path

import errors
import file_ops
from errors import InsufficientSpaceError, IntegrityFailure, StashError


class TestErrorMessages:
    def test_insufficient_space_message(self, tmp_path):
        error = InsufficientSpaceError(11 * 1024 ** 3, 9 * 1024 ** 3, tmp_path)

        assert isinstance(error, StashError)
        assert str(error) == "Insufficient disk space. Required: 11.00 GB, Available: 9.00 GB"
        assert error.required == 11 * 1024 ** 3
        assert error.path == tmp_path

    def test_small_sizes(self):
        error = InsufficientSpaceError(2048, 512)
        assert "Required: 2.0 KB" in str(error)
        assert "Available: 512 B" in str(error)

    def test_integrity_failure_names_file(self):
        error = IntegrityFailure(Path("/stash/Models/a.ckpt"), "a" * 64, "b" * 64)
        assert "a.ckpt" in str(error)
        assert error.expected == "a" * 64

    def test_format_size_shared(self):
        assert file_ops.format_size is errors.format_size
