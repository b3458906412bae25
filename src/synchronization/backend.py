"""Optional OpenCL acceleration for OpenCV.

Results are identical with or without it; calling :func:`init` is never
required.
"""

import logging

import cv2

logger = logging.getLogger(__name__)

_initialized = False


def init(use_opencl: bool = False) -> bool:
    """Check OpenCL support once and optionally enable it.

    Args:
        use_opencl: Enable OpenCL when the platform provides it

    Returns:
        True if OpenCV will use OpenCL
    """
    global _initialized

    if _initialized:
        return cv2.ocl.useOpenCL()

    have_opencl = cv2.ocl.haveOpenCL()
    cv2.ocl.setUseOpenCL(have_opencl and use_opencl)

    if have_opencl:
        device = cv2.ocl.Device.getDefault()
        logger.info("OpenCL device: %s (%s, %s)", device.name(), device.vendorName(), device.version())

    opencl_use = cv2.ocl.useOpenCL()
    logger.info(
        "OpenCL is %s and %s",
        "available" if have_opencl else "not available",
        "enabled" if opencl_use else "disabled",
    )

    _initialized = True
    return opencl_use
