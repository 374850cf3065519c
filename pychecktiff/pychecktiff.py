#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    pychecktiff is free software: you can redistribute it and/or
    modify it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License, or
    (at your option) any later version.

    pychecktiff is distributed in the hope that it will be useful,
    but WITHOUT ANY WARRANTY; without even the implied warranty of
    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
    GNU General Public License for more details.

    You should have received a copy of the GNU General Public License
    along with pychecktiff.
    If not, see <https://www.gnu.org/licenses/>.
"""

# ============================================================================
# IMPORTS
# ============================================================================

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ._version import __version__
from .validator import validate_tiff_from_buffer, validate_tiff_from_file

from ptlibs import ptjsonlib, ptprinthelper
from ptlibs.ptprinthelper import ptprint


# ============================================================================
# CONSTANTS
# ============================================================================

SCRIPTNAME         = "pychecktiff"
DEFAULT_EXTENSIONS = "tif,tiff"
PROGRESS_INTERVAL  = 50     # files between progress lines
MAX_PRINTED        = 10     # diagnostics printed per file and severity


# ============================================================================
# MAIN CLASS
# ============================================================================

class PyCheckTiff:
    """
    TIFF/JP4 container integrity checker – ptlibs compliant.

    Three-phase process:
    1. Collect input files (explicit paths, directories by extension)
    2. Full-scan validation of every file: each scanline of each directory
       is decoded, decoder errors and warnings are captured
    3. Summarise and save the JSON report

    Decision logic:
      no errors                      → valid
      no errors, warnings, --strict  → invalid
      any error                      → invalid

    READ-ONLY on input files.
    """

    def __init__(self, args: argparse.Namespace) -> None:
        self.ptjsonlib  = ptjsonlib.PtJsonLib()
        self.args       = args
        self.extensions = {e.strip().lower().lstrip(".")
                           for e in args.extensions.split(",") if e.strip()}
        self.logger     = self._setup_logger()

        self._files:   List[Path] = []
        self._results: List[Dict] = []
        self._valid        = 0
        self._invalid      = 0
        self._with_warnings = 0

        self.ptjsonlib.add_properties({
            "timestamp":        datetime.now(timezone.utc).isoformat(),
            "scriptVersion":    __version__,
            "sourceMode":       "buffer" if args.buffer else "file",
            "allDirectories":   not args.first_only,
            "strict":           args.strict,
            "totalFiles":       0,
            "validFiles":       0,
            "invalidFiles":     0,
            "filesWithWarnings": 0,
        })

    # -------------------------------------------------------------------------
    # INTERNAL HELPERS
    # -------------------------------------------------------------------------

    def _setup_logger(self) -> logging.Logger:
        # Handlers go on the package logger so decoder and driver debug
        # lines land in the same place; close() detaches them again.
        logger = logging.getLogger("pychecktiff")
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        self._log_handlers: List[logging.Handler] = []
        if self.args.log_file:
            self._log_handlers.append(logging.FileHandler(self.args.log_file))
        if self.args.verbose and not self.args.json:
            self._log_handlers.append(logging.StreamHandler())
        for handler in self._log_handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        if self._log_handlers:
            logger.setLevel(logging.DEBUG)
        return logger

    def close(self) -> None:
        for handler in self._log_handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._log_handlers = []

    def _print(self, message: str, level: str = "INFO") -> None:
        ptprint(message, level, condition=not (self.args.json or self.args.quiet))

    # -------------------------------------------------------------------------
    # PHASE 1 – COLLECT FILES
    # -------------------------------------------------------------------------

    def collect_files(self) -> bool:
        """
        Expand the command line paths into the list of files to validate.

        Explicit files are always taken regardless of extension; directories
        contribute files whose extension is in --extensions.

        Returns:
            bool: True if at least one file was found
        """
        self._print("\n[STEP 1/3] Collecting Files", "TITLE")

        for raw in self.args.paths:
            path = Path(raw)
            if path.is_dir():
                pattern = "**/*" if self.args.recursive else "*"
                found = sorted(p for p in path.glob(pattern)
                               if p.is_file() and p.suffix.lower().lstrip(".") in self.extensions)
                self.logger.debug(f"{path}: {len(found)} candidate file(s)")
                self._files.extend(found)
            else:
                # missing files are validated too and reported as such
                self._files.append(path)

        self.ptjsonlib.add_properties({"totalFiles": len(self._files)})
        if not self._files:
            self._print("✗ No files to validate", "ERROR")
            self.ptjsonlib.add_node(self.ptjsonlib.create_node_object(
                "fileCollection",
                properties={"success": False, "error": "No input files found"}
            ))
            return False

        self._print(f"✓ {len(self._files)} file(s) to validate", "OK")
        return True

    # -------------------------------------------------------------------------
    # PHASE 2 – VALIDATE
    # -------------------------------------------------------------------------

    def _validate_single(self, path: Path) -> Dict:
        all_directories = not self.args.first_only
        if self.args.buffer:
            try:
                data = path.read_bytes()
            except OSError as exc:
                self.logger.warning(f"Cannot read {path}: {exc}")
                return {"errors": [f"Cannot open: {exc.strerror or exc}"], "warnings": []}
            result = validate_tiff_from_buffer(data, all_directories=all_directories)
        else:
            result = validate_tiff_from_file(path, all_directories=all_directories)
        return result.to_dict()

    def validate_all_files(self) -> None:
        """
        Phase 2 – Run the full-scan validation on every collected file.

        Updates self._results, self._valid, self._invalid, self._with_warnings.
        """
        self._print("\n[STEP 2/3] Validating Files", "TITLE")

        total = len(self._files)
        for idx, path in enumerate(self._files, 1):
            if idx % PROGRESS_INTERVAL == 0 or idx == total:
                self._print(f"  {idx}/{total} ({idx * 100 // total}%)", "INFO")

            v = self._validate_single(path)
            errors, warnings = v["errors"], v["warnings"]
            valid = not errors and not (self.args.strict and warnings)

            if valid:
                self._valid += 1
                self._print(f"✓ {path}", "OK")
            else:
                self._invalid += 1
                self._print(f"✗ {path}", "ERROR")
            if warnings:
                self._with_warnings += 1

            for message in errors[:MAX_PRINTED]:
                self._print(f"    error:   {message}", "ERROR")
            for message in warnings[:MAX_PRINTED]:
                self._print(f"    warning: {message}", "WARNING")
            hidden = max(len(errors) - MAX_PRINTED, 0) + max(len(warnings) - MAX_PRINTED, 0)
            if hidden:
                self._print(f"    … {hidden} more diagnostic(s) in the JSON report", "INFO")

            self.logger.info(f"{path}: {'valid' if valid else 'invalid'}, "
                             f"{len(errors)} error(s), {len(warnings)} warning(s)")

            entry = {
                "path":         str(path),
                "valid":        valid,
                "errorCount":   len(errors),
                "warningCount": len(warnings),
                "errors":       errors,
                "warnings":     warnings,
            }
            self._results.append(entry)
            self.ptjsonlib.add_node(self.ptjsonlib.create_node_object(
                "tiffValidation", properties=entry
            ))

    # -------------------------------------------------------------------------
    # MAIN ENTRY
    # -------------------------------------------------------------------------

    def run(self) -> None:
        """Orchestrate collection, validation and the summary."""

        self._print("\n" + "=" * 70, "TITLE")
        self._print(f"TIFF INTEGRITY CHECK v{__version__}", "TITLE")
        self._print("=" * 70, "TITLE")

        if not self.collect_files():
            self.ptjsonlib.set_status("finished")
            return

        self.validate_all_files()

        self.ptjsonlib.add_properties({
            "validFiles":        self._valid,
            "invalidFiles":      self._invalid,
            "filesWithWarnings": self._with_warnings,
        })

        self._print("\n[STEP 3/3] Summary", "TITLE")
        self._print(f"Total files:         {len(self._files)}", "INFO")
        self._print(f"  Valid:             {self._valid}", "OK")
        self._print(f"  Invalid:           {self._invalid}", "ERROR" if self._invalid else "OK")
        self._print(f"  With warnings:     {self._with_warnings}", "WARNING" if self._with_warnings else "OK")
        self._print("=" * 70, "TITLE")

        self.ptjsonlib.set_status("finished")

    def save_report(self) -> Optional[str]:
        """
        Print the ptlibs JSON in --json mode and write it to --output when given.

        Returns:
            Path to the written report, or None
        """
        if self.args.json:
            ptprint(self.ptjsonlib.get_result_json(), "", self.args.json)

        if not self.args.output:
            return None

        outfile = Path(self.args.output)
        outfile.parent.mkdir(parents=True, exist_ok=True)
        outfile.write_text(self.ptjsonlib.get_result_json(), encoding="utf-8")
        self._print(f"✓ JSON report saved: {outfile}", "OK")
        return str(outfile)

    @property
    def exit_code(self) -> int:
        if not self._files:
            return 1
        return 0 if self._invalid == 0 else 1


# ============================================================================
# CLI HELPERS
# ============================================================================

def get_help() -> List[Dict]:
    return [
        {"description": [
            "TIFF/JP4 container integrity checker – ptlibs compliant",
            "Decodes every scanline and reports decoder errors and warnings",
        ]},
        {"usage": ["pychecktiff <path> [<path> ...] [options]"]},
        {"usage_example": [
            "pychecktiff image.tiff",
            "pychecktiff /data/footage -r --json",
            "pychecktiff frame.tif --buffer --strict -o report.json",
        ]},
        {"options": [
            ["path",              "",          "File or directory to check  (REQUIRED)"],
            ["-r", "--recursive", "",          "Descend into subdirectories"],
            ["-e", "--extensions", "<list>",   f"Extensions taken from directories (default: {DEFAULT_EXTENSIONS})"],
            ["--buffer",          "",          "Read each file into memory and validate the buffer"],
            ["--first-only",      "",          "Scan only the first image directory"],
            ["--strict",          "",          "Treat warnings as failures"],
            ["-o", "--output",    "<file>",    "Write the JSON report to <file>"],
            ["--log-file",        "<file>",    "Append debug log to <file>"],
            ["-v", "--verbose",   "",          "Verbose logging to stderr"],
            ["-j", "--json",      "",          "JSON output for platform integration"],
            ["-q", "--quiet",     "",          "Suppress progress output"],
            ["-h", "--help",      "",          "Show this help and exit"],
            ["--version",         "",          "Show version and exit"],
        ]},
        {"exit_codes": [
            "0  every file passed",
            "1  at least one file failed (or no input files)",
            "99 unexpected error",
            "130 interrupted by user",
        ]},
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        add_help=False,
        description=f"{SCRIPTNAME} – TIFF/JP4 integrity check"
    )
    parser.add_argument("paths",             nargs="+")
    parser.add_argument("-r", "--recursive", action="store_true")
    parser.add_argument("-e", "--extensions", default=DEFAULT_EXTENSIONS)
    parser.add_argument("--buffer",          action="store_true")
    parser.add_argument("--first-only",      action="store_true")
    parser.add_argument("--strict",          action="store_true")
    parser.add_argument("-o", "--output",    default=None)
    parser.add_argument("--log-file",        default=None)
    parser.add_argument("-v", "--verbose",   action="store_true")
    parser.add_argument("-j", "--json",      action="store_true")
    parser.add_argument("-q", "--quiet",     action="store_true")
    parser.add_argument("--version",         action="version",
                        version=f"{SCRIPTNAME} {__version__}")
    parser.add_argument("--socket-address",  default=None)
    parser.add_argument("--socket-port",     default=None)
    parser.add_argument("--process-ident",   default=None)
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or {"-h", "--help"} & set(argv):
        ptprinthelper.help_print(get_help(), SCRIPTNAME, __version__)
        sys.exit(0)

    args = build_parser().parse_args(argv)
    if args.json:
        args.quiet = True
    ptprinthelper.print_banner(SCRIPTNAME, __version__, args.json)
    return args


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
        tool = PyCheckTiff(args)
        try:
            tool.run()
            tool.save_report()
        finally:
            tool.close()
        return tool.exit_code

    except KeyboardInterrupt:
        ptprint("\n✗ Interrupted by user", "WARNING", condition=True)
        return 130
    except Exception as exc:
        ptprint(f"ERROR: {exc}", "ERROR", condition=True)
        return 99


if __name__ == "__main__":
    sys.exit(main())
