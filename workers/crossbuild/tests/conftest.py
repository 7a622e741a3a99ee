"""
Shared pytest fixtures for crossbuild tests.

No NDK, no rustup, no cargo.  The toolchain is a directory of tiny shell
scripts (``bin/clang`` printing a version line plus the per-target clang
wrappers) and cargo is a shell script whose outcome per (triple, phase,
invocation) is read from a scenario directory:

    scenario/<triple>.<phase>        one outcome per line, last line repeats
    scenario/<triple>.<phase>.count  invocation counter kept by the script
    scenario/calls.log               one line per cargo invocation

Outcomes: ok, collision, mojibake (collision with a non-UTF-8 byte), compile,
linker, toolchain, hang, noartifact, empty.
"""
import os
import shutil
import textwrap
from pathlib import Path
from typing import Dict, List

import pytest

from crossbuild.config import OrchestratorConfig
from crossbuild.core.targets import Arch, make_target


CLANG_VERSION = "18.0.2"

CLANG_SCRIPT = textwrap.dedent("""\
    #!/bin/sh
    echo "Android (11349228, +pgo, +bolt, +lto, -mlgo, based on r510928) clang version __VERSION__ (https://android.googlesource.com/toolchain/llvm-project)"
    echo "Target: x86_64-unknown-linux-gnu"
    echo "Thread model: posix"
""")

WRAPPER_SCRIPT = textwrap.dedent("""\
    #!/bin/sh
    exec "$(dirname "$0")/clang" "$@"
""")

CARGO_SCRIPT = textwrap.dedent("""\
    #!/bin/sh
    SCENARIO="__SCENARIO__"
    phase=main
    triple=""
    prev=""
    for arg in "$@"; do
        if [ "$prev" = "--target" ]; then triple="$arg"; fi
        if [ "$arg" = "-p" ]; then phase=dependency; fi
        prev="$arg"
    done

    if [ -e "$CARGO_TARGET_DIR/partial.o" ]; then leftover=yes; else leftover=no; fi
    echo "phase=$phase triple=$triple jobs=${CARGO_BUILD_JOBS:-} toolchain=${RUSTUP_TOOLCHAIN:-} pregen=${CROSSBUILD_PREGENERATED_DIR:-} leftover=$leftover" >> "$SCENARIO/calls.log"

    counter="$SCENARIO/$triple.$phase.count"
    n=$(cat "$counter" 2>/dev/null || echo 0)
    n=$((n + 1))
    echo "$n" > "$counter"

    outcome=ok
    plan="$SCENARIO/$triple.$phase"
    if [ -f "$plan" ]; then
        outcome=$(sed -n "${n}p" "$plan")
        if [ -z "$outcome" ]; then outcome=$(tail -n 1 "$plan"); fi
    fi

    out="$CARGO_TARGET_DIR/$triple/release"
    case "$outcome" in
        ok)
            echo "   Compiling ring v0.17.8" >&2
            if [ "$phase" = main ]; then
                mkdir -p "$out"
                printf 'fake shared object for %s\\n' "$triple" > "$out/libapp_lib.so"
            fi
            echo "    Finished release [optimized] target(s) in 0.01s" >&2
            exit 0
            ;;
        empty)
            mkdir -p "$out"
            : > "$out/libapp_lib.so"
            exit 0
            ;;
        noartifact)
            exit 0
            ;;
        collision)
            mkdir -p "$CARGO_TARGET_DIR"
            : > "$CARGO_TARGET_DIR/partial.o"
            echo "error: failed to run custom build command for \\`ring v0.17.8\\`" >&2
            echo "Caused by:" >&2
            echo "  failed to create directory: File exists (os error 17)" >&2
            exit 101
            ;;
        compile)
            echo "error[E0425]: cannot find value \\`OPENSSL_armcap_P\\` in this scope" >&2
            echo "error: could not compile \\`ring\\` (lib) due to 1 previous error" >&2
            exit 101
            ;;
        linker)
            echo "error: linker \\`$triple-clang\\` not found" >&2
            echo "  = note: No such file or directory (os error 2)" >&2
            exit 101
            ;;
        toolchain)
            echo "error[E0463]: can't find crate for \\`core\\`" >&2
            echo "  = note: the \\`$triple\\` target may not be installed" >&2
            exit 101
            ;;
        hang)
            # child process holding the pipes, as rustc under cargo would
            sleep 30; :
            ;;
        mojibake)
            mkdir -p "$CARGO_TARGET_DIR"
            printf 'warning: /tmp/\\377bad\\n' >&2
            echo "  failed to create directory: File exists (os error 17)" >&2
            exit 101
            ;;
    esac
    echo "unknown scenario outcome: $outcome" >&2
    exit 2
""")


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(0o755)
    return path


def make_toolchain(root: Path, version: str = CLANG_VERSION, api_level: int = 24) -> Path:
    """Lay out a fake NDK toolchain root with clang, llvm-ar and wrappers."""
    bin_dir = root / "bin"
    write_script(bin_dir / "clang", CLANG_SCRIPT.replace("__VERSION__", version))
    write_script(bin_dir / "llvm-ar", "#!/bin/sh\nexit 0\n")
    for arch in Arch:
        spec = make_target(arch, api_level)
        write_script(bin_dir / spec.linker_name(), WRAPPER_SCRIPT)
    return root


class Scenario:
    """Controls and inspects the fake cargo."""

    def __init__(self, root: Path):
        self.root = root

    def plan(self, triple: str, phase: str, *outcomes: str) -> None:
        (self.root / f"{triple}.{phase}").write_text("\n".join(outcomes) + "\n")

    def count(self, triple: str, phase: str) -> int:
        counter = self.root / f"{triple}.{phase}.count"
        return int(counter.read_text().strip()) if counter.exists() else 0

    def calls(self) -> List[Dict[str, str]]:
        log = self.root / "calls.log"
        if not log.exists():
            return []
        calls = []
        for line in log.read_text().splitlines():
            fields = dict(part.split("=", 1) for part in line.split(" ") if "=" in part)
            calls.append(fields)
        return calls

    def calls_for(self, triple: str, phase: str) -> List[Dict[str, str]]:
        return [c for c in self.calls() if c["triple"] == triple and c["phase"] == phase]


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def requires_sh():
    if os.name != "posix" or shutil.which("sh") is None:
        pytest.skip("fake toolchain scripts need a POSIX shell")


@pytest.fixture
def toolchain_root(tmp_path, requires_sh) -> Path:
    return make_toolchain(tmp_path / "toolchain")


@pytest.fixture
def scenario(tmp_path) -> Scenario:
    root = tmp_path / "scenario"
    root.mkdir()
    return Scenario(root)


@pytest.fixture
def fake_cargo(tmp_path, scenario, requires_sh, monkeypatch) -> Path:
    for var in ("CARGO_BUILD_JOBS", "RUSTUP_TOOLCHAIN", "CROSSBUILD_PREGENERATED_DIR", "CARGO_TARGET_DIR"):
        monkeypatch.delenv(var, raising=False)
    body = CARGO_SCRIPT.replace("__SCENARIO__", str(scenario.root))
    return write_script(tmp_path / "bin" / "cargo", body)


@pytest.fixture
def project_dir(tmp_path) -> Path:
    project = tmp_path / "src-tauri"
    project.mkdir()
    (project / "Cargo.lock").write_text(
        '# This file is automatically @generated by Cargo.\n'
        'version = 3\n\n'
        '[[package]]\nname = "ring"\nversion = "0.17.8"\n'
    )
    return project


@pytest.fixture
def make_config(tmp_path, toolchain_root, fake_cargo, project_dir):
    """Factory for an OrchestratorConfig wired to the fake tools."""

    def _make(**overrides) -> OrchestratorConfig:
        values = dict(
            project_dir=project_dir,
            output_dir=tmp_path / "out",
            dependency_scratch_dir=tmp_path / "scratch",
            toolchain_root_override=toolchain_root,
            host_tag="linux-x86_64",
            cargo_bin=str(fake_cargo),
            step_timeout=30,
            probe_timeout=10,
            max_parallel_jobs=4,
        )
        values.update(overrides)
        return OrchestratorConfig(**values)

    return _make
