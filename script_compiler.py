"""
SigKit Script Compiler - Turns extracted snippets into sandboxed string transforms
Extracted code is untrusted: it only ever runs inside an embedded Duktape engine,
hosted in worker processes that are killed when a call overruns its time limit
"""
import json
import logging
import multiprocessing
import queue
import re
import threading
from typing import List, Optional

import dukpy

from config import SigKitConfig
from errors import ScriptExecutionError, TransformTimeout

logger = logging.getLogger(__name__)

JS_IDENTIFIER = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')

WORKER_READY = "ready"


def insert_return(snippet: str) -> str:
    """
    Make the trailing call expression the snippet's return value.
    The boundary is the last ';' before the final character.
    """
    last_semicolon = snippet.rfind(";", 0, len(snippet) - 1)
    return f"{snippet[:last_semicolon + 1]}return {snippet[last_semicolon + 1:]}"


def _serve(conn):
    """Worker process loop: evaluate (program, argument_name, value) requests"""
    conn.send(WORKER_READY)
    while True:
        try:
            program, argument_name, value = conn.recv()
        except EOFError:
            break

        try:
            result = dukpy.evaljs(program, **{argument_name: value})
        except dukpy.JSRuntimeError as e:
            conn.send((False, str(e)))
        else:
            conn.send((True, result))


class ScriptWorker:
    """
    One Duktape host process.
    Duktape cannot be interrupted from Python, so an overrunning call
    kills the process and a fresh one takes its place.
    """

    def __init__(self, context, start_timeout: float):
        self._context = context
        self._start_timeout = start_timeout
        self._process = None
        self._conn = None
        self._start()

    def _start(self):
        self._conn, child_conn = self._context.Pipe()
        self._process = self._context.Process(
            target=_serve,
            args=(child_conn,),
            name="sigkit-js",
            daemon=True
        )
        self._process.start()
        child_conn.close()

        if not self._conn.poll(self._start_timeout) or self._conn.recv() != WORKER_READY:
            self.terminate()
            raise ScriptExecutionError("Script worker failed to start")

        logger.debug("[Compiler] Started script worker pid=%s", self._process.pid)

    def restart(self):
        self.terminate()
        self._start()

    def terminate(self):
        if self._process is not None and self._process.is_alive():
            self._process.kill()
        if self._process is not None:
            self._process.join()
        if self._conn is not None:
            self._conn.close()

    def run(self, program: str, argument_name: str, value: str, timeout: float):
        if not self._process.is_alive():
            self.restart()

        self._conn.send((program, argument_name, value))

        if not self._conn.poll(timeout):
            logger.warning(
                "[Compiler] Transform '%s' exceeded %ss, killing worker pid=%s",
                argument_name, timeout, self._process.pid
            )
            self.restart()
            raise TransformTimeout(f"Transform '{argument_name}' exceeded {timeout}s")

        try:
            ok, result = self._conn.recv()
        except EOFError:
            self.restart()
            raise ScriptExecutionError(f"Script worker died running transform '{argument_name}'")

        if not ok:
            raise ScriptExecutionError(f"Transform '{argument_name}' failed: {result}")
        return result


class ScriptWorkerPool:
    """
    Up to max_workers ScriptWorkers, started on demand.
    Thread-safe: callers block until a worker is idle.
    """

    def __init__(
        self,
        max_workers: int = SigKitConfig.MAX_JS_WORKERS,
        start_timeout: float = SigKitConfig.JS_WORKER_START_TIMEOUT
    ):
        # spawn, not fork: the parent runs an event loop and thread pools
        self._context = multiprocessing.get_context("spawn")
        self._max_workers = max_workers
        self._start_timeout = start_timeout

        self._idle: "queue.Queue[Optional[ScriptWorker]]" = queue.Queue()
        self._workers: List[ScriptWorker] = []
        self._reserved = 0
        self._lock = threading.Lock()
        self._closed = False

    def _acquire(self) -> ScriptWorker:
        try:
            worker = self._idle.get_nowait()
        except queue.Empty:
            worker = self._spawn_or_wait()

        if worker is None or self._closed:
            raise ScriptExecutionError("Script compiler is closed")
        return worker

    def _spawn_or_wait(self) -> Optional[ScriptWorker]:
        with self._lock:
            can_spawn = not self._closed and self._reserved < self._max_workers
            if can_spawn:
                self._reserved += 1

        if not can_spawn:
            return self._idle.get()

        try:
            worker = ScriptWorker(self._context, self._start_timeout)
        except Exception:
            with self._lock:
                self._reserved -= 1
            raise

        with self._lock:
            self._workers.append(worker)
        return worker

    def run(self, program: str, argument_name: str, value: str, timeout: float):
        worker = self._acquire()
        try:
            return worker.run(program, argument_name, value, timeout)
        finally:
            self._idle.put(worker)

    def close(self):
        with self._lock:
            self._closed = True
            workers = list(self._workers)
            self._workers.clear()

        for worker in workers:
            worker.terminate()

        # Wake callers blocked waiting for a worker
        for _ in range(self._max_workers):
            self._idle.put(None)


class CompiledTransform:
    """
    String-to-string transform backed by an extracted JS snippet.
    Each call evaluates in a fresh interpreter, so no state survives between calls.
    """

    def __init__(
        self,
        source: str,
        argument_name: str,
        pool: ScriptWorkerPool,
        timeout: float
    ):
        self.source = source
        self.argument_name = argument_name
        self._pool = pool
        self._timeout = timeout
        self._program = "(function(%s){%s})(dukpy[%s]);" % (
            argument_name,
            insert_return(source),
            json.dumps(argument_name)
        )

    def __call__(self, value: str) -> str:
        result = self._pool.run(self._program, self.argument_name, value, self._timeout)

        if not isinstance(result, str):
            raise ScriptExecutionError(
                f"Transform '{self.argument_name}' returned {type(result).__name__}, expected str"
            )
        return result

    def __repr__(self):
        return f"CompiledTransform(argument_name={self.argument_name!r}, length={len(self.source)})"


class ScriptCompiler:
    """
    Compiles snippets into CompiledTransforms.
    Owns the worker processes that bound JS execution time.
    """

    def __init__(
        self,
        timeout: float = SigKitConfig.JS_EXECUTION_TIMEOUT,
        max_workers: int = SigKitConfig.MAX_JS_WORKERS
    ):
        self.timeout = timeout
        self._workers = ScriptWorkerPool(max_workers=max_workers)

    def compile(self, snippet: str, argument_name: str) -> CompiledTransform:
        if not JS_IDENTIFIER.match(argument_name):
            raise ValueError(f"Invalid argument name: {argument_name!r}")

        logger.debug("[Compiler] Compiling %d byte snippet for argument %s",
                     len(snippet), argument_name)
        return CompiledTransform(snippet, argument_name, self._workers, self.timeout)

    def compile_optional(self, snippet: Optional[str], argument_name: str) -> Optional[CompiledTransform]:
        return self.compile(snippet, argument_name) if snippet else None

    def close(self):
        """Cleanup resources"""
        self._workers.close()
