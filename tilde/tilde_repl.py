import sys
from pathlib import Path

from tilde.tilde_runtime import ScriptRunner
from tilde.tilde_printer import Printer


# A basic input prompt; returns "" at end of input.
def read_input(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def _print_effect(effect):
    if effect.get('topics') == ['stdout']:
        print(effect.get('message', ''), flush=True)


def _fatal_recursion():
    print("Fatal: maximum recursion depth exceeded", file=sys.stderr)
    raise SystemExit(2)


def run_script_file(file_path: str):
    """Run a Tilde script file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    # Output is echoed as it happens so `say` before `ask` shows up in order.
    runner = ScriptRunner(source_dir=str(p.parent.resolve()), on_effect=_print_effect)
    try:
        result = runner.handle_script(source)
    except RecursionError:
        _fatal_recursion()
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        if result.details:
            print(result.details, file=sys.stderr)
        raise SystemExit(1)


def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = sys.argv[1:] if argv is None else argv
    if args:
        arg = args[0]
        # Treat the first argument as a script file when it's not a flag
        if not arg.startswith("-"):
            run_script_file(arg)
            return

    print("Tilde REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit, 'reset' to clear the session.")

    runner = ScriptRunner(source_dir=str(Path.cwd()), on_effect=_print_effect)
    printer = Printer()

    # REPL Loop
    while True:
        try:
            raw = read_input(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break
            if line == "reset":
                runner.reset()
                print("Session cleared.")
                continue

            result = runner.handle_script(raw)

            if result.status == 'error':
                # Pretty, location-aware message
                print(result.format_error(), file=sys.stderr)
                continue

            # Print final result
            if result.value is not None:
                print(printer.pformat(result.value))

        except EOFError:
            print("\nExiting.")
            break
        except RecursionError:
            print("Error: maximum recursion depth exceeded", file=sys.stderr)
            runner.evaluator.call_stack.clear()
        except KeyboardInterrupt:
            print("\nInterrupted.")


if __name__ == "__main__":
    main()
