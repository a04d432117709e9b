"""
Inference wrapper for the DeOldify colorization engine.

This module provides a high-level interface for colorizing photographs with
the stable or artistic generator: model loading, single image colorization
with progress reporting, file-to-file colorization and batch processing.
"""

import logging
import time
from pathlib import Path
from typing import Union, List, Optional, Dict, Any
import numpy as np

from ..data.models import EngineConfig
from ..data.preprocessor import ImagePreprocessor
from ..models.architecture import ArchitectureSpec, get_architecture, count_convolutions, parameter_count
from ..models.network import DeOldifyNetwork
from ..models.weight_manager import WeightStore, validate_model_file
from ..utils.config import load_engine_config
from ..utils.exceptions import ColorizationError, EngineNotInitializedError
from ..utils.logging_utils import LoggingContext, get_logger
from .post_processor import ColorizationPostProcessor, tensor_to_image
from .progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


class ColorizationInference:
    """
    High-level inference wrapper for image colorization.

    One instance holds at most one loaded generator. ``initialize`` loads a
    variant from the models directory; calling it again replaces the
    previous weights. Progress is reported per call through an optional
    callback receiving a percentage in [0, 100].
    """

    def __init__(self,
                 config: Optional[EngineConfig] = None,
                 config_path: Optional[Union[str, Path]] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        """
        Initialize the inference wrapper.

        Args:
            config: Engine configuration; defaults are used when omitted
            config_path: Path to a YAML or JSON configuration file, used when
                ``config`` is not given
            progress_callback: Default callback for colorization progress
        """
        if config is None:
            config = load_engine_config(config_path)
        self.config = config
        self.progress_callback = progress_callback

        self.preprocessor = ImagePreprocessor(render_size=config.render_size)
        self.post_processor = ColorizationPostProcessor(
            output_config={'output_quality': config.output_quality})

        self._spec: Optional[ArchitectureSpec] = None
        self._network: Optional[DeOldifyNetwork] = None
        self._half = config.half
        self._reporter: Optional[ProgressReporter] = None

    # Model lifecycle

    def initialize(self, variant: Optional[Union[str, bool]] = None, half: Optional[bool] = None) -> None:
        """
        Load a generator from the models directory.

        Args:
            variant: "stable" or "artistic" (True/False accepted); defaults to config
            half: Whether the model file stores 16-bit floats; defaults to config

        Raises:
            ConfigurationError: If the variant is unknown
            ModelLoadError: If the model file is missing or unreadable
            WeightFormatError: If the model file does not match the architecture
        """
        spec = get_architecture(self.config.variant if variant is None else variant)
        half = self.config.half if half is None else half
        model_path = Path(self.config.models_dir) / self.config.model_file(spec.name)

        # Release the previous model before reading the next one
        self._network = None
        self._spec = None
        self._half = self.config.half

        with LoggingContext(f"initialize {spec.name} model",
                            metrics={'variant': spec.name, 'half': half}):
            store = WeightStore.load(model_path, spec, half=half)
            self._activate(spec, store, half)

        get_logger().log_model_load(spec.name, model_path, half, store.num_values,
                                    count_convolutions(spec))

    def initialize_from_store(self, spec: ArchitectureSpec, store, half: bool = False) -> None:
        """
        Build the generator from an already populated weight store.

        Args:
            spec: Architecture of the weights
            store: WeightStore, or any mapping of parameter name to array
            half: Precision the weights were stored with

        Raises:
            WeightFormatError: If the store does not match ``spec``
        """
        self._network = None
        self._spec = None
        self._half = self.config.half
        if not isinstance(store, WeightStore):
            store = WeightStore(store, spec=spec, half=half)
        self._activate(spec, store, half)
        logger.info(f"Initialized {spec.name} model from in-memory weight store")

    def _activate(self, spec: ArchitectureSpec, store, half: bool) -> None:
        network = DeOldifyNetwork(spec, store)
        self._spec = spec
        self._half = half
        self._network = network

    @property
    def is_initialized(self) -> bool:
        return self._network is not None

    @property
    def variant(self) -> Optional[str]:
        return self._spec.name if self._spec is not None else None

    @property
    def half(self) -> bool:
        return self._half

    @property
    def conv_count(self) -> int:
        if self._spec is None:
            return 0
        return count_convolutions(self._spec)

    @property
    def progress_step(self) -> float:
        count = self.conv_count
        return 100.0 / count if count else 0.0

    @property
    def progress(self) -> float:
        """Progress of the running colorization in percent, 0 outside a call."""
        if self._reporter is None:
            return 0.0
        return min(max(self._reporter.value, 0.0), 100.0)

    def check_model(self, variant: Union[str, bool], half: bool = False) -> bool:
        """
        Check that a variant's model file exists and has exactly the expected size.
        """
        spec = get_architecture(variant)
        model_path = Path(self.config.models_dir) / self.config.model_file(spec.name)
        result = validate_model_file(model_path, spec, half=half)
        if not result['valid']:
            logger.warning(f"Model check failed for {spec.name}: {result['error']}")
        return result['valid']

    # Colorization

    def colorize(self, image, progress_callback: Optional[ProgressCallback] = None) -> np.ndarray:
        """
        Colorize an in-memory image.

        Args:
            image: uint8 RGB (H, W, 3) or grayscale (H, W) array, or a PIL image
            progress_callback: Callback for this call; defaults to the engine's

        Returns:
            uint8 RGB array with the input's height and width

        Raises:
            EngineNotInitializedError: If no model is loaded
            InvalidDimensionsError: If the image cannot be interpreted
        """
        if not self.is_initialized:
            raise EngineNotInitializedError("colorize")

        rgb = self.preprocessor.as_rgb_array(image)
        callback = progress_callback or self.progress_callback
        reporter = ProgressReporter(self.progress_step, callback)
        self._reporter = reporter
        start_time = time.time()

        try:
            x = self.preprocessor.preprocess(rgb)
            y = self._network.forward(x, reporter)
            colorized = tensor_to_image(y)
            result = self.post_processor.transfer_chroma(rgb, colorized)
        finally:
            reporter.reset()
            self._reporter = None

        get_logger().log_colorization(self._spec.name, rgb.shape[:2], x.shape[1:],
                                      time.time() - start_time)
        return result

    def colorize_image(self,
                       input_path: Union[str, Path],
                       output_path: Optional[Union[str, Path]] = None,
                       progress_callback: Optional[ProgressCallback] = None) -> Path:
        """
        Colorize an image file and save the result.

        Args:
            input_path: Path to the input image
            output_path: Destination; defaults to ``<stem><suffix><ext>`` next to the input
            progress_callback: Callback for this call

        Returns:
            Path of the saved image

        Raises:
            EngineNotInitializedError: If no model is loaded
            ImageIOError: If the input cannot be read or the output cannot be written
        """
        if not self.is_initialized:
            raise EngineNotInitializedError("colorize_image")

        input_path = Path(input_path)
        if output_path is None:
            output_path = self._default_output_path(input_path)

        with LoggingContext(f"colorize {input_path.name}"):
            image = self.preprocessor.load_image(input_path)
            colorized = self.colorize(image, progress_callback)
            return self.post_processor.save_image(colorized, output_path)

    def colorize_batch(self,
                       input_paths: List[Union[str, Path]],
                       output_dir: Optional[Union[str, Path]] = None,
                       suffix: Optional[str] = None,
                       progress_callback: Optional[ProgressCallback] = None) -> List[Optional[Path]]:
        """
        Colorize several image files.

        Failures of individual images are logged and reported as ``None``.

        Args:
            input_paths: Paths to the input images
            output_dir: Directory for the results; defaults to each input's directory
            suffix: Appended to each file stem; defaults to config
            progress_callback: Callback for each image's pass

        Returns:
            Output path, or None for a failed image, per input

        Raises:
            EngineNotInitializedError: If no model is loaded
        """
        if not self.is_initialized:
            raise EngineNotInitializedError("colorize_batch")
        if not input_paths:
            return []

        results: List[Optional[Path]] = []
        for index, input_path in enumerate(input_paths, start=1):
            input_path = Path(input_path)
            output_path = self._default_output_path(input_path, output_dir, suffix)
            try:
                results.append(self.colorize_image(input_path, output_path, progress_callback))
            except ColorizationError as e:
                logger.error(f"Failed to colorize {input_path}: {e}")
                results.append(None)
            logger.info(f"Processed image {index}/{len(input_paths)}")

        failed = sum(1 for result in results if result is None)
        logger.info(f"Batch finished: {len(results) - failed} colorized, {failed} failed")
        return results

    def _default_output_path(self, input_path: Path,
                             output_dir: Optional[Union[str, Path]] = None,
                             suffix: Optional[str] = None) -> Path:
        suffix = self.config.output_suffix if suffix is None else suffix
        directory = Path(output_dir) if output_dir is not None else input_path.parent
        return directory / f"{input_path.stem}{suffix}{input_path.suffix}"

    def get_model_info(self) -> Dict[str, Any]:
        """
        Get information about the loaded model.

        Returns:
            Dictionary containing model information
        """
        if self._spec is None:
            return {'initialized': False}

        return {
            'initialized': True,
            'variant': self._spec.name,
            'precision': 'half' if self._half else 'full',
            'convolutions': count_convolutions(self._spec),
            'progress_step': self.progress_step,
            'total_parameters': parameter_count(self._spec),
            'render_size': self.preprocessor.render_size,
            'model_file': self.config.model_file(self._spec.name),
        }
