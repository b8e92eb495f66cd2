# Plot RSS and throughput against distance for one or more sweep result files

import glob
import sys

import matplotlib.pyplot as plt

from linksweep.utils import load_results

files = sys.argv[1:] or sorted(glob.glob("new_stats_*.csv"))
if len(files) == 0:
    sys.exit("No result files found")

fig, (ax_rss, ax_throughput) = plt.subplots(2, sharex=True)

for filename in files:
    df = load_results(filename)
    label = df.attrs["model"]
    df.plot(ax=ax_rss, x="distance", y="rss", label=label)
    df.plot(ax=ax_throughput, x="distance", y="throughput", label=label, drawstyle="steps-post")

ax_rss.set_ylabel("rss [dBm]")
ax_throughput.set_ylabel("throughput [Mbps]")
ax_throughput.set_xlabel("distance [m]")
ax_rss.grid()
ax_throughput.grid()

plt.show()
