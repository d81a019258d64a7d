"""
Shared fixtures: a scripted stand-in for the gemma binary
"""

import os
import sys
import textwrap

import pytest

FAKE_GEMMA = textwrap.dedent('''\
    import sys
    import time


    def out(text):
        sys.stdout.write(text)
        sys.stdout.flush()


    def reply(words):
        out("[ Reading prompt ] ")
        for _ in range(3):
            out("..")
            time.sleep(0.01)
        for word in words:
            out(word)
            time.sleep(0.005)
        out("\\n\\n> ")


    sys.stderr.write("gemma: loading weights\\n")
    sys.stderr.flush()
    out("Loading model " + " ".join(sys.argv[1:3]) + "\\n")
    out("\\n> ")

    while True:
        line = sys.stdin.readline()
        if not line:
            sys.exit(0)
        line = line.rstrip("\\n")
        if line == "exit":
            sys.exit(0)
        if line == "crash":
            out("[ Reading prompt ] ....partial answer")
            sys.exit(3)
        if line == "slow":
            time.sleep(1)
        words = ["You said: "] + [word + " " for word in line.split()]
        reply(words)
''')


@pytest.fixture
def gemma_dir(tmp_path):
    """Directory holding an executable fake gemma plus model files"""
    binary = tmp_path / "gemma"
    binary.write_text(f"#!{sys.executable}\n" + FAKE_GEMMA, encoding='utf-8')
    os.chmod(binary, 0o755)
    (tmp_path / "2b-it-sfp.sbs").write_bytes(b"\0")
    (tmp_path / "tokenizer.spm").write_bytes(b"\0")
    return tmp_path
