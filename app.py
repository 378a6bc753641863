#!/usr/bin/env python3
import logging
import sys
from kaede import create_app, configure_logging, BIND, PORT

def main() -> None:
    configure_logging()
    if not sys.platform.startswith("linux"):
        logging.getLogger("kaede").warning("kaede targets Linux desktops; detection will find nothing here")
    app = create_app()
    logging.getLogger("kaede").info("serving on http://%s:%s", BIND, PORT)
    app.run(host=BIND, port=PORT, debug=False)

if __name__ == "__main__":
    main()
