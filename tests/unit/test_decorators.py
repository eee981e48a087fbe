import contextlib
import io
import unittest

from hmatch.utilities.decorators import suppress_print


class TestSuppressPrint(unittest.TestCase):
    def test_suppress_print_with_return_value(self):
        """Check that the decorator suppresses print statements but does not interfere
        with return values."""

        @suppress_print
        def function_with_return_value():
            print("This print should be suppressed")
            return 42

        with contextlib.redirect_stdout(io.StringIO()) as stdout:
            result = function_with_return_value()

        self.assertEqual(stdout.getvalue(), "")
        self.assertEqual(result, 42)

    def test_preserves_metadata(self):
        @suppress_print
        def documented():
            """Docstring."""

        self.assertEqual(documented.__name__, "documented")
        self.assertEqual(documented.__doc__, "Docstring.")


if __name__ == "__main__":
    unittest.main()
