# -*- coding: utf-8 -*-
import time
import threading
import uuid
import logging
from typing import Dict, Iterator, List, Mapping, Optional

from framekit.archive import ArchiveWriter, ChunkPipe
from framekit.config import Config
from framekit.errors import BatchFailedError, FrameKitError, StreamingFailureError
from framekit.manifest import Manifest, assign_output_names, parse_manifest, validate_sources
from framekit.pipeline import process
from framekit.progress import ProgressChannel, default_channel
from framekit.quantize import get_quantizer
from framekit.runner import BatchTask, JobRunner

logger = logging.getLogger(__name__)


def build_tasks(manifest: Manifest, sources: Mapping[str, bytes], config: Config) -> List[BatchTask]:
    names = assign_output_names(manifest.file_names, config)
    return [
        BatchTask(source=sources[request.file_name], y=request.y,
                  output_name=names[request.file_name], file_name=request.file_name)
        for request in manifest.images
    ]


def convert_batch(manifest: Manifest, sources: Mapping[str, bytes], sink,
                  config: Optional[Config] = None, channel: Optional[ProgressChannel] = None,
                  quantizer=None, close_sink: bool = True) -> List[str]:
    """
    Converts every image of the manifest and streams the results as one ZIP to `sink`.

    Validation happens before anything is written or reported. Any per-image
    failure aborts the whole batch: the archive is left unfinalized, the job
    gets an 'error' event and the error is re-raised.
    """
    config = config or Config()
    channel = channel if channel is not None else default_channel

    validate_sources(manifest, sources, config)
    tasks = build_tasks(manifest, sources, config)
    quantizer = quantizer or get_quantizer(config)
    job_id = manifest.job_id or uuid.uuid4().hex

    def process_task(source: bytes, y: float, file_name: str) -> bytes:
        return process(source, y, quantizer=quantizer, config=config, file_name=file_name)

    logger.info(f"  -> Info: Job {job_id}: converting {len(tasks)} image(s) with concurrency {config.concurrency}.")
    start_time = time.time()
    channel.start(job_id, len(tasks))

    try:
        archive = ArchiveWriter(sink, expected=len(tasks), compresslevel=config.zip_compress_level, close_sink=close_sink)
    except StreamingFailureError as e:
        channel.fail(job_id, str(e))
        raise

    runner = JobRunner(process_task, archive, channel, job_id, concurrency=config.concurrency)
    try:
        names = runner.run(tasks)
    except BatchFailedError as e:
        archive.abort(e)
        channel.fail(job_id, str(e))
        logger.error(f"  -> Error: Job {job_id}: batch aborted after {runner.completed} of {len(tasks)} image(s): {e}")
        if isinstance(e.cause, StreamingFailureError):
            raise e.cause
        raise
    except Exception as e:
        archive.abort(e)
        channel.fail(job_id, str(e))
        logger.error(f"  -> Error: Job {job_id}: batch aborted by an unexpected error: {e}")
        raise

    try:
        archive.finalize()
    except FrameKitError as e:
        archive.abort(e)
        channel.fail(job_id, str(e))
        logger.error(f"  -> Error: Job {job_id}: failed to finalize archive: {e}")
        raise

    channel.complete(job_id)
    logger.info(f"  -> Info: Job {job_id}: {len(names)} image(s) converted in {time.time() - start_time:.2f}s.")
    return names


def convert_request(manifest_payload, sources: Mapping[str, bytes], sink,
                    config: Optional[Config] = None, channel: Optional[ProgressChannel] = None,
                    quantizer=None, close_sink: bool = True) -> List[str]:
    """Parses a raw manifest payload (JSON text or dict) and runs convert_batch."""
    config = config or Config()
    manifest = parse_manifest(manifest_payload, config)
    return convert_batch(manifest, sources, sink, config=config, channel=channel,
                         quantizer=quantizer, close_sink=close_sink)


def stream_request(manifest_payload, sources: Mapping[str, bytes], config: Optional[Config] = None,
                   channel: Optional[ProgressChannel] = None, quantizer=None) -> Iterator[bytes]:
    """
    Validates the request, then converts it on a background thread and returns
    an iterator over the ZIP bytes as they are produced.

    Validation errors are raised here, before any byte is produced. The
    conversion runs through a ChunkPipe of `config.pipe_max_chunks` chunks, so
    producers wait for a slow consumer. A failed batch is re-raised from the
    iterator; closing the iterator early cancels the conversion.
    """
    config = config or Config()
    manifest = parse_manifest(manifest_payload, config)
    validate_sources(manifest, sources, config)

    pipe = ChunkPipe(max_chunks=config.pipe_max_chunks)
    outcome: Dict[str, BaseException] = {}

    def produce():
        try:
            convert_batch(manifest, sources, pipe, config=config, channel=channel, quantizer=quantizer)
        except Exception as e:
            outcome['error'] = e
            pipe.abort(e)

    producer = threading.Thread(target=produce, name="archive-producer", daemon=True)

    def chunks() -> Iterator[bytes]:
        producer.start()
        finished = False
        try:
            for chunk in pipe:
                yield chunk
            finished = True
        except StreamingFailureError:
            producer.join()
            if 'error' in outcome:
                raise outcome['error']
            raise
        finally:
            if not finished:
                pipe.cancel()
            producer.join()

    return chunks()
