"""
Command Line Interface for gifconform
Main entry point with argument parsing and command execution
"""

import argparse
import glob
import json
import os
import signal
import sys
import threading
import traceback
from typing import Any, Dict, List, Optional

import yaml

from .batch_runner import BatchJob, BatchRunner
from .config_manager import ConfigManager
from .conversion_service import CUSTOM_MODE, ConversionService
from .gif_processing.exceptions import GifProcessingError, ValidationError
from .gif_processing.models import ApprovalRequired, Success
from .logger_setup import setup_logging

logger = None  # Will be initialized after logging setup

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_APPROVAL_REQUIRED = 2
OUTPUT_SUFFIX = '_conv'


class GifConformCLI:
    def __init__(self):
        self.config = None
        self.service = None
        self.cancel_event = threading.Event()
        self._signal_count = 0

    def main(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point"""
        try:
            args = self._parse_arguments(argv)

            # Quiet console by default; --debug enables verbose output
            global logger
            effective_level = 'DEBUG' if args.debug else args.log_level
            config_dir = args.config_dir or 'config'
            logger = setup_logging(config_path=os.path.join(config_dir, 'logging.yaml'),
                                   log_level=effective_level, logs_dir=args.logs_dir)

            self._setup_signal_handlers()
            self._initialize_components(args)
            return self._execute_command(args)

        except KeyboardInterrupt:
            if logger:
                logger.info("Operation cancelled by user")
            return EXIT_FAILED
        except GifProcessingError as e:
            if logger:
                logger.error(str(e))
            print(f"Error: {e}")
            return EXIT_FAILED
        except Exception as e:
            if logger:
                logger.error(f"Unexpected error: {e}")
                logger.debug(traceback.format_exc())
            else:
                print(f"Error: {e}")
            return EXIT_FAILED

    def _setup_signal_handlers(self):
        """First Ctrl+C cancels in-flight runs so they clean up; the second exits immediately."""
        def signal_handler(signum, frame):
            self._signal_count += 1
            try:
                signal_name = signal.Signals(signum).name
            except ValueError:
                signal_name = str(signum)

            if self._signal_count >= 2:
                print(f"\n{signal_name} received again. Exiting...")
                os._exit(EXIT_FAILED)

            print(f"\nReceived {signal_name}, cancelling... (Press Ctrl+C again to force quit)")
            if logger:
                logger.warning(f"Received {signal_name} signal, cancelling in-flight conversions")
            self.cancel_event.set()

        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

    def _parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog='gifconform',
            description="gifconform - Fit animated GIF/WebP/AVIF images to a file size and canvas budget",
            epilog="Examples:\n"
                   "  %(prog)s convert sticker.gif out.gif\n"
                   "  %(prog)s c sticker.webp --mode custom --max-size 1 --max-width 512 --max-height 512\n"
                   "  %(prog)s c \"*.gif\" -o converted/ -j 4 --allow-frame-reduction\n"
                   "  %(prog)s info sticker.gif\n\n"
                   "Exit codes: 0 success, 1 failure, 2 frame reduction needs approval\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        # Global options
        parser.add_argument('--config-dir', default=None,
                            help='Configuration directory (default: packaged defaults)')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default=None, help='Override console logging level (default: WARNING)')
        parser.add_argument('-v', '--debug', action='store_true',
                            help='Enable verbose debug output in console and logs')
        parser.add_argument('--temp-dir', help='Temporary directory for intermediate files')
        parser.add_argument('--logs-dir', default='logs', help='Directory for log files (default: logs)')
        parser.add_argument('--backend', choices=['auto', 'pillow', 'gifsicle'],
                            help='Processing back end (default: auto)')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        convert_parser = subparsers.add_parser('convert', aliases=['c'],
                                               help='Convert file(s) - auto-detects batch mode from glob patterns')
        convert_parser.add_argument('input', help='Input GIF/WebP/AVIF file or glob pattern (e.g., *.gif for batch)')
        convert_parser.add_argument('output', nargs='?', help='Output GIF file (directory in batch mode)')
        convert_parser.add_argument('-m', '--mode', default='preset',
                                    help="Preset name or 'custom' (default: preset)")
        convert_parser.add_argument('-s', '--max-size', type=float, metavar='MB',
                                    help='Maximum output size in MB (custom mode, 0.1-50)')
        convert_parser.add_argument('--min-width', type=int, metavar='PX', help='Minimum width (custom mode)')
        convert_parser.add_argument('--min-height', type=int, metavar='PX', help='Minimum height (custom mode)')
        convert_parser.add_argument('--max-width', type=int, metavar='PX', help='Maximum width (custom mode)')
        convert_parser.add_argument('--max-height', type=int, metavar='PX', help='Maximum height (custom mode)')
        convert_parser.add_argument('-r', '--allow-frame-reduction', action='store_true',
                                    help='Drop frames without asking if palette reduction is not enough')
        convert_parser.add_argument('--no-prompt', action='store_true',
                                    help='Never ask interactively for frame reduction approval')
        convert_parser.add_argument('-o', '--output-dir', help='Output directory (default: output)')
        convert_parser.add_argument('-j', '--parallel', type=int, metavar='N',
                                    help='Number of parallel workers for batch mode')
        convert_parser.add_argument('--json', action='store_true', help='Print response(s) as JSON')

        info_parser = subparsers.add_parser('info', aliases=['i'], help='Show metadata of an animated image')
        info_parser.add_argument('input', help='Input file')

        config_parser = subparsers.add_parser('config', aliases=['cfg'], help='Configuration management')
        config_subparsers = config_parser.add_subparsers(dest='config_action')
        config_subparsers.add_parser('show', help='Show current configuration')
        config_subparsers.add_parser('validate', help='Validate configuration files')

        args = parser.parse_args(argv)
        if not args.command:
            parser.print_help()
            parser.exit(EXIT_FAILED)
        return args

    def _initialize_components(self, args: argparse.Namespace):
        """Load configuration, apply CLI overrides and build the conversion service"""
        self.config = ConfigManager(args.config_dir)
        overrides = self._extract_config_overrides(args)
        if overrides:
            self.config.update_from_args(overrides)
        self.service = ConversionService(self.config)

    @staticmethod
    def _extract_config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
        overrides = {}
        if args.temp_dir:
            overrides['temp_dir'] = args.temp_dir
        if args.backend:
            overrides['gif_settings.processing.backend'] = args.backend
        if getattr(args, 'parallel', None):
            overrides['gif_settings.performance.max_workers'] = args.parallel
        return overrides

    def _execute_command(self, args: argparse.Namespace) -> int:
        """Execute the requested command"""
        command = args.command
        if command == 'c':
            command = 'convert'
        elif command == 'i':
            command = 'info'
        elif command == 'cfg':
            command = 'config'

        if command == 'convert':
            if self._is_glob_pattern(args.input):
                logger.info(f"Detected glob pattern, switching to batch mode: {args.input}")
                return self._convert_batch(args)
            return self._convert_single(args)
        if command == 'info':
            return self._show_info(args)
        if command == 'config':
            return self._handle_config_command(args)
        return EXIT_FAILED

    @staticmethod
    def _is_glob_pattern(path: str) -> bool:
        return any(ch in path for ch in '*?[')

    @staticmethod
    def _build_params(args: argparse.Namespace) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            'mode': args.mode,
            'allowFrameReduction': args.allow_frame_reduction,
        }
        custom_fields = {
            'maxFileSizeMB': args.max_size,
            'minWidth': args.min_width,
            'minHeight': args.min_height,
            'maxWidth': args.max_width,
            'maxHeight': args.max_height,
        }
        given = {key: value for key, value in custom_fields.items() if value is not None}
        if given and args.mode != CUSTOM_MODE:
            raise ValidationError(f"Size and dimension options require --mode {CUSTOM_MODE}", field='mode')
        params.update(given)
        return params

    @staticmethod
    def _default_output_path(source: str, output_dir: str) -> str:
        stem = os.path.splitext(os.path.basename(source))[0]
        return os.path.join(output_dir, f"{stem}{OUTPUT_SUFFIX}.gif")

    def _convert_single(self, args: argparse.Namespace) -> int:
        params = self._build_params(args)
        output_path = args.output or self._default_output_path(args.input, args.output_dir or 'output')

        result, response = self.service.process(args.input, output_path, params,
                                                cancel_checker=self.cancel_event.is_set)

        if isinstance(result, ApprovalRequired) and not args.no_prompt and sys.stdin.isatty():
            print(result.message)
            answer = input("Remove frames to reach the target size? [y/N] ").strip().lower()
            if answer in ('y', 'yes'):
                params['allowFrameReduction'] = True
                result, response = self.service.process(args.input, output_path, params,
                                                        cancel_checker=self.cancel_event.is_set)
            else:
                response = self.service.decline_approval(result)
                result = None

        self._print_response(args.input, response, args.json)
        if isinstance(result, Success):
            return EXIT_OK
        if isinstance(result, ApprovalRequired):
            return EXIT_APPROVAL_REQUIRED
        return EXIT_FAILED

    def _convert_batch(self, args: argparse.Namespace) -> int:
        params = self._build_params(args)
        input_files = sorted(path for path in glob.glob(args.input) if os.path.isfile(path))
        if not input_files:
            logger.error(f"No files match pattern: {args.input}")
            print(f"No files match pattern: {args.input}")
            return EXIT_FAILED

        output_dir = args.output or args.output_dir or 'output'
        jobs = [BatchJob(source=path, output_path=self._default_output_path(path, output_dir), params=dict(params))
                for path in input_files]
        runner = BatchRunner(self.service, max_workers=args.parallel, show_progress=not args.json,
                             cancel_event=self.cancel_event)
        results = runner.run(jobs)

        if args.json:
            print(json.dumps([dict(r.response, input=r.job.source) for r in results], indent=2))
        else:
            for job_result in results:
                self._print_response(job_result.job.source, job_result.response, False)
            for failure in runner.error_handler.get_top_failures():
                print(f"  {failure['category']}: {failure['count']} file(s), e.g. {failure['sample_message']}")

        if all(r.succeeded for r in results):
            return EXIT_OK
        if any(r.needs_approval for r in results) and not any(
                not r.succeeded and not r.needs_approval for r in results):
            return EXIT_APPROVAL_REQUIRED
        return EXIT_FAILED

    @staticmethod
    def _print_response(source: str, response: Dict[str, Any], as_json: bool):
        if as_json:
            print(json.dumps(dict(response, input=source), indent=2))
            return
        name = os.path.basename(source)
        if response.get('success'):
            print(f"✓ {name} -> {response['outputPath']}: "
                  f"{response['originalWidth']}x{response['originalHeight']} -> "
                  f"{response['finalWidth']}x{response['finalHeight']}, {response['frameCount']} frames, "
                  f"{response['originalSizeBytes'] / (1024 * 1024):.2f}MB -> "
                  f"{response['finalSizeBytes'] / (1024 * 1024):.2f}MB")
        elif response.get('requiresApproval'):
            print(f"? {name}: {response['approvalMessage']}")
            print("  Re-run with --allow-frame-reduction to accept.")
        else:
            print(f"✗ {name}: {response.get('error', 'conversion failed')}")

    def _show_info(self, args: argparse.Namespace) -> int:
        info = self.service.describe(args.input)
        print(f"File: {args.input}")
        for key, value in info.items():
            print(f"  {key}: {value}")
        return EXIT_OK

    def _handle_config_command(self, args: argparse.Namespace) -> int:
        """Handle configuration commands"""
        if args.config_action == 'show':
            print("Current Configuration:")
            print("=" * 50)
            print(yaml.dump(self.config.config, default_flow_style=False, indent=2))
            return EXIT_OK
        if args.config_action == 'validate':
            errors = self.config.validate_configuration_values()
            if errors:
                print("Configuration is invalid:")
                for error in errors:
                    print(f"  - {error}")
                return EXIT_FAILED
            print("Configuration is valid")
            return EXIT_OK
        logger.error("Config command requires an action (show|validate)")
        return EXIT_FAILED


def main(argv: Optional[List[str]] = None):
    """Console script entry point"""
    sys.exit(GifConformCLI().main(argv))


if __name__ == "__main__":
    main()
