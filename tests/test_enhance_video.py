import io
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from PIL import Image

import cli
import config
import enhance_video
from codec import FRAME_PATTERN, VideoInfo
from errors import InputNotFound, InvalidVideoFormat
from job_manager import JobManager, JobOptions, JobState


class TestParseArgs(unittest.TestCase):
    def test_defaults(self):
        args = cli.parse_args(["in.mp4", "out.mp4"])
        options = cli.build_job_options(args)
        self.assertEqual(options, JobOptions())
        self.assertEqual(options.model, "realism")
        self.assertEqual(options.fps, 24)
        self.assertEqual(options.batch_size, 4)
        self.assertTrue(options.temporal_smoothing)

    def test_flags_map_to_options(self):
        args = cli.parse_args(
            [
                "in.mp4",
                "out.mp4",
                "-m",
                "cinematic",
                "-f",
                "30",
                "-b",
                "8",
                "-s",
                "0.9",
                "--no-temporal",
                "--blend",
                "0.5",
                "--no-clean",
                "--no-resume",
            ]
        )
        options = cli.build_job_options(args)
        self.assertEqual(
            options,
            JobOptions(
                model="cinematic",
                fps=30,
                batch_size=8,
                strength=0.9,
                temporal_smoothing=False,
                blend_factor=0.5,
                clean=False,
                resume=False,
            ),
        )

    def test_out_of_range_values_are_clamped(self):
        args = cli.parse_args(["in.mp4", "out.mp4", "-f", "500", "-b", "0", "-s", "3", "--blend", "-1"])
        options = cli.build_job_options(args)
        self.assertEqual(options.fps, config.FPS_RANGE[1])
        self.assertEqual(options.batch_size, config.BATCH_SIZE_RANGE[0])
        self.assertEqual(options.strength, 1.0)
        self.assertEqual(options.blend_factor, 0.0)

    def test_unknown_model_falls_back_to_default(self):
        args = cli.parse_args(["in.mp4", "out.mp4", "-m", "vaporwave"])
        with self.assertLogs("config", level="WARNING"):
            options = cli.build_job_options(args)
        self.assertEqual(options.model, config.DEFAULT_MODEL)

    def test_missing_paths_are_rejected(self):
        with self.assertRaises(ValueError):
            cli.validate_runtime_args(cli.parse_args([]))

    def test_job_commands_need_no_paths(self):
        cli.validate_runtime_args(cli.parse_args(["--status", "job_12345678"]))
        cli.validate_runtime_args(cli.parse_args(["--list-models"]))

    def test_default_output_path(self):
        output = cli.resolve_output_path(Path("/videos/clip.mov"), None)
        self.assertEqual(output.name, "clip_enhanced.mp4")


class TestSettings(unittest.TestCase):
    def test_environment_and_overrides(self):
        env = {
            "OLLAMA_HOST": "http://gpu-box:11434/",
            "VIDEO_ENHANCER_WORK_DIR": "/tmp/work",
            "VIDEO_ENHANCER_REQUEST_TIMEOUT": "30",
        }
        settings = config.load_settings(env, state_dir="/tmp/state")
        self.assertEqual(settings.ollama_host, "http://gpu-box:11434")
        self.assertEqual(settings.work_dir, Path("/tmp/work").resolve())
        self.assertEqual(settings.state_dir, Path("/tmp/state").resolve())
        self.assertEqual(settings.request_timeout, 30.0)
        self.assertIsNone(settings.otlp_endpoint)

    def test_invalid_timeout_uses_default(self):
        with self.assertLogs("config", level="WARNING"):
            settings = config.load_settings({"VIDEO_ENHANCER_REQUEST_TIMEOUT": "soon"})
        self.assertEqual(settings.request_timeout, config.DEFAULT_REQUEST_TIMEOUT)


class TestValidatePaths(unittest.TestCase):
    def test_missing_input(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(InputNotFound):
                enhance_video.validate_paths(Path(temp_dir) / "nope.mp4", Path(temp_dir) / "out.mp4")

    def test_non_video_extension(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            source = Path(temp_dir) / "notes.txt"
            source.write_text("hello")
            with self.assertRaises(InvalidVideoFormat):
                enhance_video.validate_paths(source, Path(temp_dir) / "out.mp4")

    def test_output_must_differ_from_input(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            source = Path(temp_dir) / "clip.mp4"
            source.touch()
            with self.assertRaises(ValueError):
                enhance_video.validate_paths(source, source)

    def test_output_directory_is_created(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            source = Path(temp_dir) / "clip.MKV"
            source.touch()
            _, output = enhance_video.validate_paths(source, Path(temp_dir) / "renders" / "out.mp4")
            self.assertTrue(output.parent.is_dir())


class FacadeTestCase(unittest.TestCase):
    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.root = Path(self._temp_dir.name)
        self.settings = config.Settings(
            work_dir=self.root / "work",
            state_dir=self.root / "state",
        )
        self.input_path = self.root / "clip.mp4"
        self.input_path.write_bytes(b"video")
        self.output_path = self.root / "clip_out.mp4"

        stdout_patch = mock.patch("sys.stdout", new_callable=io.StringIO)
        self.stdout = stdout_patch.start()
        self.addCleanup(stdout_patch.stop)

    def fake_codec(self, frame_count=3):
        codec = mock.Mock()
        codec.probe.return_value = VideoInfo(framerate=24.0, width=16, height=16, duration_seconds=1.0)

        def extract(input_video, frames_dir, fps):
            for index in range(frame_count):
                Image.new("RGB", (16, 16), (index * 30, 10, 10)).save(frames_dir / (FRAME_PATTERN % index))
            return frame_count

        def assemble(frames_dir, output_video, fps):
            output_video.write_bytes(b"encoded")
            return output_video

        codec.extract.side_effect = extract
        codec.assemble.side_effect = assemble
        return codec

    def open_manager(self):
        manager = JobManager(self.settings.work_dir, self.settings.state_dir)
        self.addCleanup(manager.close)
        return manager


class TestEnhanceFacade(FacadeTestCase):
    def test_enhance_without_service_uses_fallback(self):
        codec = self.fake_codec()
        with mock.patch("enhance_video.connect_inference", return_value=None):
            output = enhance_video.enhance(
                self.input_path,
                self.output_path,
                JobOptions(clean=False),
                settings=self.settings,
                codec=codec,
                show_progress=False,
            )

        self.assertEqual(output, self.output_path.resolve())
        self.assertTrue(output.exists())
        codec.extract.assert_called_once()
        jobs = self.open_manager().list_jobs()
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].state, JobState.COMPLETED)

    def test_clean_run_leaves_no_job_behind(self):
        with mock.patch("enhance_video.connect_inference", return_value=None):
            enhance_video.enhance(
                self.input_path,
                self.output_path,
                JobOptions(),
                settings=self.settings,
                codec=self.fake_codec(),
                show_progress=False,
            )

        self.assertEqual(self.open_manager().list_jobs(), [])

    def test_unreachable_service_returns_no_client(self):
        with mock.patch("enhance_video.OllamaClient") as client_cls:
            client_cls.return_value.is_running.return_value = False
            client = enhance_video.connect_inference(self.settings, "llava")
        self.assertIsNone(client)

    def test_list_models(self):
        names = [preset.name for preset in enhance_video.list_models()]
        self.assertEqual(names, ["realism", "upscale", "denoise", "sharpen", "cinematic"])


class TestMainBehavior(FacadeTestCase):
    def job_args(self):
        return ["--work-dir", str(self.settings.work_dir), "--state-dir", str(self.settings.state_dir)]

    def test_main_returns_1_when_output_equals_input(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            rc = enhance_video.main([str(self.input_path), str(self.input_path)])

        self.assertEqual(rc, 1)
        self.assertIn("Error:", stderr.getvalue())

    def test_main_returns_1_for_missing_input(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            rc = enhance_video.main([str(self.root / "missing.mp4"), str(self.output_path)])

        self.assertEqual(rc, 1)
        self.assertIn("Input file not found", stderr.getvalue())

    def test_main_runs_enhancement(self):
        with mock.patch("enhance_video.enhance", return_value=self.output_path) as enhance_mock:
            rc = enhance_video.main([str(self.input_path), str(self.output_path), "-m", "denoise"] + self.job_args())

        self.assertEqual(rc, 0)
        options = enhance_mock.call_args.args[2]
        self.assertEqual(options.model, "denoise")
        self.assertEqual(enhance_mock.call_args.kwargs["settings"].work_dir, self.settings.work_dir.resolve())

    def test_main_returns_130_on_interrupt(self):
        with mock.patch("enhance_video.enhance", side_effect=KeyboardInterrupt):
            with mock.patch("sys.stderr", new_callable=io.StringIO):
                rc = enhance_video.main([str(self.input_path), str(self.output_path)] + self.job_args())

        self.assertEqual(rc, 130)

    def test_status_of_unknown_job_returns_1(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            rc = enhance_video.main(["--status", "job_00000000"] + self.job_args())

        self.assertEqual(rc, 1)
        self.assertIn("Job not found", stderr.getvalue())

    def test_status_and_cancel_of_known_job(self):
        manager = self.open_manager()
        job = manager.create_or_resume(self.input_path, self.output_path, JobOptions())
        manager.update_progress(job.id, 1, 4)
        manager.close()

        rc = enhance_video.main(["--status", job.id] + self.job_args())
        self.assertEqual(rc, 0)
        self.assertIn("Progress: 25% (1/4 frames)", self.stdout.getvalue())

        rc = enhance_video.main(["--cancel", job.id] + self.job_args())
        self.assertEqual(rc, 0)
        self.assertEqual(self.open_manager().get_status(job.id).state, JobState.CANCELLED)

    def test_cleanup_command(self):
        manager = self.open_manager()
        job = manager.create_or_resume(self.input_path, self.output_path, JobOptions())
        manager.close()

        rc = enhance_video.main(["--cleanup", job.id] + self.job_args())

        self.assertEqual(rc, 0)
        self.assertFalse(job.work_dir.exists())
        self.assertEqual(self.open_manager().list_jobs(), [])

    def test_list_models_command(self):
        rc = enhance_video.main(["--list-models"])
        self.assertEqual(rc, 0)
        self.assertIn("cinematic", self.stdout.getvalue())


class TestTracing(unittest.TestCase):
    def test_traced_decorator_preserves_function_name(self):
        from tracing import traced

        @traced
        def example_function():
            return 7

        self.assertEqual(example_function.__name__, "example_function")
        self.assertEqual(example_function(), 7)

    def test_init_tracing_without_endpoint_is_noop(self):
        from tracing import init_tracing

        self.assertFalse(init_tracing(None))


if __name__ == "__main__":
    unittest.main()
