"""
Device availability detection for pytorch_gmres.

The solver itself runs wherever the unknown lives; these helpers pick a
sensible default device for building problems and report what the current
machine offers.
"""

import torch
from typing import Any, Dict
from functools import lru_cache


@lru_cache(maxsize=1)
def check_cuda_available() -> bool:
    """
    Check if a CUDA device can run a float64 reduction.

    Returns:
        bool: True if CUDA is available and working
    """
    if not torch.cuda.is_available():
        return False
    try:
        x = torch.ones(4, dtype=torch.float64, device='cuda')
        torch.dot(x, x).item()
        return True
    except RuntimeError:
        return False


def default_device() -> str:
    """'cuda' when a working GPU is present, 'cpu' otherwise."""
    return 'cuda' if check_cuda_available() else 'cpu'


def get_environment_info() -> Dict[str, Any]:
    """
    Collect the versions and devices relevant to the solver.

    Returns:
        Dict[str, Any]: torch version, CUDA availability and device names
    """
    cuda = check_cuda_available()
    return {
        'torch_version': torch.__version__,
        'cuda_available': cuda,
        'cuda_version': torch.version.cuda if cuda else None,
        'devices': ['cpu'] + ([torch.cuda.get_device_name(i)
                               for i in range(torch.cuda.device_count())] if cuda else []),
    }


def print_environment_report() -> None:
    """Print a short environment report."""
    info = get_environment_info()
    print("=" * 60)
    print("PyTorch GMRES - Environment Report")
    print("=" * 60)
    print(f"  PyTorch version: {info['torch_version']}")
    status = "Available" if info['cuda_available'] else "Not Available"
    print(f"  CUDA: {status}")
    if info['cuda_available']:
        print(f"  CUDA version: {info['cuda_version']}")
    for i, name in enumerate(info['devices']):
        print(f"  Device {i}: {name}")
    print("=" * 60)


if __name__ == "__main__":
    print_environment_report()
