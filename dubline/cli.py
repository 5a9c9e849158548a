"""Command-Line Interface handler for Dubline."""

import argparse
import logging
import os
import sys

from .batch import BatchRunner, translate_all, synthesize_all
from .config_loader import ConfigLoader
from .editor import DubbingEditor
from .exceptions import DublineError, ConfigurationError
from .log_setup import setup_logging, setup_logging_from_config
from .media import MediaTranscoder
from .openai_api import OpenAIClient
from .project import ProjectStore
from .synthesizer import OpenAISpeechSynthesizer
from .transcriber import OpenAITranscriber, WhisperTranscriber
from .translator import OpenAIChatTranslator, HuggingFaceTranslator

logger = logging.getLogger(__name__)


def build_editor(config: dict, store: ProjectStore) -> DubbingEditor:
    """Wires the configured collaborators into a DubbingEditor."""
    transcoder = MediaTranscoder(
        ffmpeg_path=config.get('ffmpeg_path'),
        ffprobe_path=config.get('ffprobe_path'),
        delivery_sample_rate=config.get('delivery_sample_rate', 44100),
        delivery_channels=config.get('delivery_channels', 2),
        delivery_bitrate=config.get('delivery_bitrate', '120k'),
    )

    backend = config.get('backend', 'openai')
    client = None
    if backend == 'openai' or config.get('openai_api_key'):
        client = OpenAIClient(
            config.get('openai_api_key'),
            base_url=config.get('openai_base_url', 'https://api.openai.com/v1'),
            timeout=config.get('request_timeout', 300),
        )

    if backend == 'openai':
        transcriber = OpenAITranscriber(client, model=config.get('asr_model', 'whisper-1'))
        translator = OpenAIChatTranslator(client, model=config.get('translation_model', 'gpt-3.5-turbo-1106'))
    elif backend == 'local':
        device = config.get('device', 'cuda')
        transcriber = WhisperTranscriber(
            model_name=config.get('whisper_model', 'medium'),
            device=device,
            fp16=config.get('whisper_fp16', True),
        )
        translator = HuggingFaceTranslator(
            model_name=config.get('hf_translation_model', 'Helsinki-NLP/opus-mt-en-zh'),
            device=device,
        )
    else:
        raise ConfigurationError(f"Unsupported backend '{backend}' specified in config.", backend)

    # Speech is only available from the hosted service
    synthesizer = None
    if client is not None:
        synthesizer = OpenAISpeechSynthesizer(
            client,
            model=config.get('tts_model', 'tts-1'),
            voice=config.get('tts_voice', 'nova'),
            response_format=config.get('tts_format', 'aac'),
        )

    return DubbingEditor(
        config=config,
        store=store,
        transcoder=transcoder,
        transcriber=transcriber,
        translator=translator,
        synthesizer=synthesizer,
    )


class CLIHandler:
    """Parses arguments and runs one Dubline operation."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            description="Dubline: transcribe, translate and re-voice a recording, keeping its timing.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        parser.add_argument(
            "-c", "--config",
            default="config.yaml",
            help="Path to the configuration YAML file."
        )
        parser.add_argument(
            "--work-dir",
            default=None,
            help="Override the working directory specified in the config file."
        )
        parser.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Set the logging level for console and file output."
        )
        parser.add_argument(
            "--backend",
            default=None,
            choices=["openai", "local"],
            help="Override the transcription/translation backend specified in config."
        )

        sub = parser.add_subparsers(dest="command", required=True)
        sub.add_parser("create", help="Create a new project and print its session id.")

        transcribe = sub.add_parser("transcribe", help="Transcribe the project's source media.")
        transcribe.add_argument("-s", "--sid", required=True, help="Project session id.")
        transcribe.add_argument("-i", "--input", default=None, help="Source media path or resource URL.")
        transcribe.add_argument("--force", action="store_true", help="Discard saved transcription first.")

        for name, text in (("translate-all", "Translate every stale segment."),
                           ("synthesize-all", "Synthesize every stale segment.")):
            cmd = sub.add_parser(name, help=text)
            cmd.add_argument("-s", "--sid", required=True, help="Project session id.")
            cmd.add_argument("--concurrency", type=int, default=None, help="Parallel requests.")

        merge = sub.add_parser("merge", help="Merge a segment with the one after it.")
        merge.add_argument("-s", "--sid", required=True, help="Project session id.")
        merge.add_argument("segment", help="Id of the segment to extend.")
        merge.add_argument("next", help="Id of the segment directly after it.")

        export = sub.add_parser("export", help="Assemble the dubbed audio track.")
        export.add_argument("-s", "--sid", required=True, help="Project session id.")

        sub.add_parser("sweep", help="Remove projects idle longer than the expiry window.")
        return parser

    def _load_config(self, args) -> dict:
        try:
            config = ConfigLoader().load_config(args.config)
        except ConfigurationError as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}", exc_info=True)
            sys.exit(1)
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {args.config}, using defaults")
            config = ConfigLoader().load_config(None)

        if args.work_dir:
            logger.info(f"Overriding work_dir from config with CLI argument: {args.work_dir}")
            config['work_dir'] = args.work_dir
        if args.backend:
            logger.info(f"Overriding backend from config with CLI argument: {args.backend}")
            config['backend'] = args.backend
        return config

    def run(self, argv=None) -> None:
        """Parses arguments, sets up logging, loads config, and runs the command."""
        args = self.parser.parse_args(argv)

        log_level = getattr(logging, args.log_level.upper(), logging.INFO)
        setup_logging(log_level=log_level, log_dir='logs', log_file='dubline_init.log')

        config = self._load_config(args)
        setup_logging_from_config(config, log_level)
        logger.info("Logging re-configured with settings from config file.")

        # One-shot commands never live long enough to need expiry threads
        store = ProjectStore(
            config.get('work_dir', 'work'),
            expiry_seconds=config.get('expiry_seconds', 3 * 24 * 3600),
            check_interval=config.get('expiry_check_interval', 3.0),
            start_watchers=False,
        )

        try:
            exit_code = self._dispatch(args, config, store)
        except DublineError as e:
            side = "request" if e.is_client_error else "processing"
            logger.error(f"A Dubline {side} error occurred for {e.identifier}: {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2)
        finally:
            store.close()
        sys.exit(exit_code)

    def _dispatch(self, args, config: dict, store: ProjectStore) -> int:
        if args.command == "create":
            project = store.create()
            print(project.sid)
            return 0

        if args.command == "sweep":
            self._load_all(store)
            expired = store.sweep()
            logger.info(f"Removed {expired} expired projects")
            return 0

        editor = build_editor(config, store)
        if args.command == "transcribe":
            timeline = editor.transcribe(args.sid, args.input, force=args.force)
            logger.info(f"Timeline ready: {len(timeline)} segments, language={timeline.language}")
            return 0

        if args.command in ("translate-all", "synthesize-all"):
            if args.concurrency:
                config['batch_concurrency'] = args.concurrency
            runner = BatchRunner.from_config(config)
            fn = translate_all if args.command == "translate-all" else synthesize_all
            report = fn(editor, args.sid, runner)
            return 0 if report.ok else 1

        if args.command == "merge":
            segment = editor.merge(args.sid, args.segment, args.next)
            logger.info(f"Merged into {segment.id}: {segment.start}~{segment.end}")
            return 0

        if args.command == "export":
            result = editor.export(args.sid)
            for warning in result.track.warnings:
                logger.warning(f"Segment {warning.segment_id} overruns by {warning.overrun:.2f}s")
            print(result.path)
            return 0

        self.parser.error(f"Unknown command {args.command}")
        return 2

    def _load_all(self, store: ProjectStore) -> None:
        # store.create keeps the persisted idle time of projects it loads from disk
        projects_dir = os.path.join(store.work_dir, "projects")
        if not os.path.isdir(projects_dir):
            return
        for name in sorted(os.listdir(projects_dir)):
            if name.startswith("project-"):
                store.create(name[len("project-"):])


def main() -> None:
    CLIHandler().run()
