import asyncio
import sys
from pathlib import Path

from config import config
from services.adapter_srv import build_adapter
from utils import logging_ut, errors_ut

USAGE = """usage: python main.py <command> [args]
  ls
  stat <path>
  put <local_file> <path> [public|private]
  get <path> [local_file]
  mv <path> <newpath>
  rm <path>
  rmdir <path>
  visibility <path> [public|private]"""


async def run(argv) -> int:
    logging_ut.setup_logging(config.LOG_LEVEL)
    logger = logging_ut.get_logger("main")

    if not argv:
        print(USAGE)
        return 2

    adapter = build_adapter()
    await adapter.init()
    logger.debug(f"blobstore v{config.VERSION}, driver={config.DRIVER_KIND}, container={config.STORAGE_CONTAINER}")

    cmd, args = argv[0], argv[1:]
    try:
        if cmd == "ls":
            for rec in await adapter.list_contents():
                print(f"{rec.type:4} {rec.size if rec.size is not None else '-':>12} {rec.path}")
        elif cmd == "stat" and len(args) == 1:
            print((await adapter.get_metadata(args[0])).as_dict())
        elif cmd == "put" and len(args) in (2, 3):
            visibility = args[2] if len(args) == 3 else "private"
            print((await adapter.write(args[1], Path(args[0]), visibility)).as_dict())
        elif cmd == "get" and len(args) in (1, 2):
            record = await adapter.read(args[0])
            if len(args) == 2:
                Path(args[1]).write_bytes(record.contents or b"")
            else:
                sys.stdout.buffer.write(record.contents or b"")
        elif cmd == "mv" and len(args) == 2:
            print((await adapter.rename(args[0], args[1])).as_dict())
        elif cmd == "rm" and len(args) == 1:
            await adapter.delete(args[0])
        elif cmd == "rmdir" and len(args) == 1:
            print(f"{len(await adapter.delete_dir(args[0]))} objects deleted")
        elif cmd == "visibility" and len(args) == 1:
            print((await adapter.get_visibility(args[0]))["visibility"])
        elif cmd == "visibility" and len(args) == 2:
            print((await adapter.set_visibility(args[0], args[1]))["visibility"])
        else:
            print(USAGE)
            return 2
    except errors_ut.StorageError as e:
        kind, msg = errors_ut.translate_exception(e)
        logger.error(msg)
        return 1 if kind is errors_ut.ErrorKind.NOT_FOUND else 3

    return 0


if __name__ == '__main__':
    try:
        sys.exit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        pass
