# Sweep the distance between two wifi nodes until the link collapses
#
#   python simulate_distance_sweep.py --model 3 --increment 5 --time 3

from linksweep.cli import app

if __name__ == "__main__":
    app()
