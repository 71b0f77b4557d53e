import logging

from uvicorn.logging import DefaultFormatter


def get_logger(name: str, log_level=logging.INFO):
    """``name`` 로거를 리턴합니다.

    핸들러가 없는 로거를 처음 요청할 때만 uvicorn 포맷터를 사용하는
    ``StreamHandler`` 를 붙입니다.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(log_level)
        ch = logging.StreamHandler()
        ch.setFormatter(DefaultFormatter(fmt="%(levelprefix)s %(message)s"))
        logger.addHandler(ch)

    return logger
